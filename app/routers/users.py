# File: app/routers/users.py
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.core.security import require_role
from app.models.user import User, UserRole

router = APIRouter(prefix="/admin/users", tags=["admin-users"])

@router.get("", dependencies=[Depends(require_role("admin"))])
def list_users(role: Optional[str] = Query(None), db: Session = Depends(get_db)):
    q = db.query(User).filter(User.is_active.is_(True))
    if role:
        if role not in [x.value for x in UserRole]:
            raise HTTPException(400, "Bad role")
        q = q.filter(User.role == UserRole(role))
    return [{"id": u.id, "email": u.email, "name": u.name, "role": u.role.value} for u in q.order_by(User.name, User.id)]
