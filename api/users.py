from __future__ import annotations

from typing import Tuple

from flask import Blueprint, abort, g, jsonify, request

from models import storage
from models.schemas.auth import EmailSchema
from models.schemas.user import ProfileUpdateSchema, RoleSchema, UsernameSchema, UserOutSchema
from models.user import User
from utils.decorators import auth_optional, auth_required, identity, roles_required

MAX_LIMIT = 100

bp = Blueprint("users", __name__)

user_out_schema = UserOutSchema()
user_list_out_schema = UserOutSchema(many=True)
profile_update_schema = ProfileUpdateSchema()
username_schema = UsernameSchema()
role_schema = RoleSchema()
email_schema = EmailSchema()

SORT_FIELDS = {
    "created_at": User.created_at,
    "email": User.email,
    "username": User.username,
    "name": User.name,
}


def parse_pagination() -> Tuple[int, int]:
    try:
        page = int(request.args.get("page", "1"))
        limit = int(request.args.get("limit", "20"))
        page = max(page, 1)
        limit = max(1, min(limit, MAX_LIMIT))
        return page, limit
    except ValueError:
        abort(400, description="page and limit must be integers")


def parse_sort(default="-created_at"):
    sort = request.args.get("sort", default)
    desc = sort.startswith("-")
    key = sort[1:] if desc else sort
    if key not in SORT_FIELDS:
        abort(400, description=f"Unsupported sort field. Allowed: {', '.join(SORT_FIELDS)}")
    column = SORT_FIELDS[key]
    return (column.desc() if desc else column.asc(),)


def _json():
    return request.get_json(silent=True) or {}


@bp.get("")
@roles_required(["ADMIN", "SUPERADMIN"])
def list_users():
    """
    List all users - admin
    ---
    tags:
      - Users
    security:
      - Bearer: []
    parameters:
      - in: query
        name: page
        type: integer
      - in: query
        name: limit
        type: integer
      - in: query
        name: sort
        type: string
        description: created_at, email, username or name; prefix with - for descending
    responses:
      200: { description: OK }
      403: { description: Forbidden }
    """
    session = storage.get_session()
    page, limit = parse_pagination()
    order_by = parse_sort()

    query = session.query(User)
    total = query.count()
    rows = query.order_by(*order_by).offset((page - 1) * limit).limit(limit).all()
    return jsonify(
        {
            "data": user_list_out_schema.dump(rows),
            "meta": {"page": page, "limit": limit, "total": total},
        }
    ), 200


@bp.put("/me")
@auth_required()
def update_me():
    """
    Update the caller's profile (name, avatar)
    ---
    tags:
      - Users
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            name: { type: string }
            avatar: { type: string }
    responses:
      200: { description: OK }
      422: { description: Validation error }
    """
    data = profile_update_schema.load(_json())
    user = identity().accounts.update_profile(g.current_user["id"], data)
    return jsonify({"success": True, "message": "Profile updated successfully", "user": user_out_schema.dump(user)}), 200


@bp.post("/check-username")
@auth_optional()
def check_username():
    """
    Is a username free? A signed-in caller who already owns it gets available=true.
    ---
    tags:
      - Users
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            username: { type: string }
    responses:
      200: { description: OK }
    """
    data = username_schema.load(_json())
    caller = g.current_user["id"] if g.current_user else None
    return jsonify(identity().accounts.check_username(data["username"], caller)), 200


@bp.put("/me/username")
@auth_required()
def update_username():
    data = username_schema.load(_json())
    return jsonify(identity().accounts.update_username(g.current_user["id"], data["username"])), 200


@bp.post("/forgot-username")
def forgot_username():
    data = email_schema.load(_json())
    return jsonify(identity().accounts.forgot_username(data["email"])), 200


@bp.put("/<user_id>/role")
@roles_required(["SUPERADMIN"])
def set_role(user_id: str):
    """
    Superadmin-only: set a user's role.
    Body: { "role": "USER" | "ADMIN" | "SUPERADMIN" }
    ---
    tags:
      - Users
    security:
      - Bearer: []
    parameters:
      - in: path
        name: user_id
        type: string
        required: true
      - in: body
        name: body
        schema:
          type: object
          properties:
            role: { type: string }
    responses:
      200: { description: OK }
      403: { description: Forbidden }
      404: { description: User not found }
    """
    data = role_schema.load(_json())
    user = identity().accounts.set_role(user_id, data["role"])
    return jsonify({"success": True, "user": user_out_schema.dump(user)}), 200
