from flask import Blueprint, request, abort
from flask_jwt_extended import create_access_token, jwt_required, get_jwt_identity, get_jwt
from sqlalchemy import select
from repair_tracker import get_db
from repair_tracker.models.staff import StaffUser
from repair_tracker.services.policy import login_claims

auth_bp = Blueprint('auth', __name__)


@auth_bp.post('/login')
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip().lower()
    password = data.get('password')
    if not email or not password:
        abort(400, description='email & password required')
    session = get_db()
    user = session.execute(select(StaffUser).where(StaffUser.email == email)).scalar_one_or_none()
    if not user or not user.is_active or not user.verify_password(password):
        abort(401, description='invalid credentials')
    # JWT identity must be a string (flask-jwt-extended v4 requirement)
    token = create_access_token(identity=str(user.id), additional_claims=login_claims(user))
    return {'access_token': token}


@auth_bp.get('/me')
@jwt_required()
def me():
    user_id = int(get_jwt_identity())
    user = get_db().get(StaffUser, user_id)
    if not user:
        abort(404)
    return {
        'id': user.id,
        'name': user.name,
        'email': user.email,
        'role': user.role,
        'perms': get_jwt().get('perms', []),
    }
