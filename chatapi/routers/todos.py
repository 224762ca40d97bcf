from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends

from chatapi.auth.deps import RequestContext, require_account
from chatapi.models import StatusResp, TodoCreateReq, TodoOut, TodoUpdateReq
from chatapi.services import todos

router = APIRouter(prefix="/todos", tags=["todos"])

@router.get("", response_model=List[TodoOut])
def get_todos(ctx: RequestContext = Depends(require_account)):
    return [TodoOut(**t) for t in todos.list_todos(ctx.account_id)]

@router.post("", response_model=TodoOut)
def add_todo(body: TodoCreateReq, ctx: RequestContext = Depends(require_account)):
    return TodoOut(**todos.add_todo(ctx.account_id, body.text))

@router.patch("/{todo_id}", response_model=TodoOut)
def update_todo(todo_id: str, body: TodoUpdateReq, ctx: RequestContext = Depends(require_account)):
    return TodoOut(**todos.update_todo(ctx.account_id, todo_id, text=body.text, done=body.done))

@router.delete("/{todo_id}", response_model=TodoOut)
def delete_todo(todo_id: str, ctx: RequestContext = Depends(require_account)):
    return TodoOut(**todos.delete_todo(ctx.account_id, todo_id))

@router.post("/clear-completed", response_model=StatusResp)
def clear_completed(ctx: RequestContext = Depends(require_account)):
    return StatusResp(details={"deleted": todos.clear_completed(ctx.account_id)})
