# Routes for handling requests
from flask import Blueprint, current_app, jsonify, request, send_from_directory
from flask_jwt_extended import (current_user, get_current_user, get_jwt, jwt_required,
                                set_access_cookies, unset_jwt_cookies, verify_jwt_in_request)
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

from forms import parse_positive_int
from posts import REMOVED

# Create blueprints for different route categories
main_bp = Blueprint('main', __name__)
auth_bp = Blueprint('auth', __name__)
users_bp = Blueprint('users', __name__)
posts_bp = Blueprint('posts', __name__)


def identity():
    return current_app.extensions['identity']


def post_service():
    return current_app.extensions['posts']


def json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def form_or_json():
    """Multipart form fields when sent, otherwise the JSON body."""
    if request.form or request.files:
        return request.form
    return json_body()


def optional_viewer():
    """Session user if a usable token came with the request, else None.

    A bad or expired token on a public route is treated as no token at all.
    """
    try:
        verify_jwt_in_request(optional=True)
    except (JWTExtendedException, PyJWTError):
        return None
    return get_current_user()


def session_response(message, token, user):
    response = jsonify({"message": message, "token": token, "user": user.private_dict()})
    set_access_cookies(response, token)
    return response


@main_bp.route('/', methods=['GET'])
def welcome():
    """Health check"""
    return jsonify({"message": "PublicFeed API running"}), 200


@main_bp.route('/uploads/<path:filename>', methods=['GET'])
def uploaded_image(filename):
    return send_from_directory(current_app.config['UPLOAD_FOLDER'], filename)


# Authentication Endpoints
@auth_bp.route('/signup', methods=['POST'])
def signup():
    """User Registration Endpoint"""
    identity().register(json_body())
    return jsonify({"message": "OTP sent to your email for verification"}), 201


@auth_bp.route('/resend-otp', methods=['POST'])
def resend_otp():
    identity().resend_otp(json_body().get('email'))
    return jsonify({"message": "A new OTP has been sent to your email"}), 200


@auth_bp.route('/verify-otp', methods=['POST'])
def verify_otp():
    data = json_body()
    token, user = identity().verify_otp(data.get('email'), data.get('otp'))
    return session_response("Email verified successfully", token, user), 200


@auth_bp.route('/login', methods=['POST'])
def login():
    """User Login Endpoint"""
    data = json_body()
    token, user = identity().login(data.get('email'), data.get('password'))
    return session_response("Login successful", token, user), 200


@auth_bp.route('/logout', methods=['POST'])
@jwt_required()
def logout():
    identity().revoke(get_jwt())
    response = jsonify({"message": "Logged out successfully"})
    unset_jwt_cookies(response)
    return response, 200


# User Endpoints
@users_bp.route('/me', methods=['GET'])
@jwt_required()
def show_user_profile():
    """Get current user's profile"""
    return jsonify({"user": current_user.private_dict()}), 200


@users_bp.route('/update-profile', methods=['PUT'])
@jwt_required()
def update_user_profile():
    """Update current user's profile"""
    user = identity().update_profile(current_user, form_or_json(), request.files.get('avatar'))
    return jsonify({"message": "Profile updated successfully", "user": user.private_dict()}), 200


@users_bp.route('/request-reset', methods=['POST'])
def request_password_reset():
    message = identity().request_password_reset(json_body().get('email'))
    return jsonify({"message": message}), 200


@users_bp.route('/reset-password', methods=['POST'])
def reset_password():
    identity().reset_password(json_body())
    return jsonify({"message": "Password reset successful. Please log in with your new password."}), 200


@users_bp.route('', methods=['GET'])
def list_users():
    viewer = optional_viewer()
    limit = parse_positive_int(request.args.get('limit'), 'limit', None)
    users = identity().list_users(viewer, limit)
    return jsonify({"users": [u.public_dict() for u in users]}), 200


@users_bp.route('/<int:user_id>', methods=['GET'])
def get_user_profile(user_id):
    user = identity().get_user(user_id)
    return jsonify({"user": user.public_dict()}), 200


# Post Endpoints
@posts_bp.route('', methods=['POST'])
@jwt_required()
def create_post():
    data = form_or_json()
    post = post_service().create_post(current_user, data.get('text'),
                                      request.files.get('image'), data.get('image'))
    return jsonify({"message": "Post created successfully", "post": post.to_dict()}), 201


@posts_bp.route('/feed', methods=['GET'])
def get_feed():
    """Newest posts first, paginated"""
    page = parse_positive_int(request.args.get('page'), 'page', 1)
    limit = parse_positive_int(request.args.get('limit'), 'limit', 10)
    pagination = post_service().feed(page, limit)
    return jsonify({
        "posts": [post.to_dict() for post in pagination.items],
        "pagination": {
            "currentPage": pagination.page,
            "totalPages": pagination.pages,
            "totalPosts": pagination.total,
            "hasNextPage": pagination.has_next,
            "hasPrevPage": pagination.has_prev,
        }
    }), 200


@posts_bp.route('/user', methods=['GET'])
@jwt_required()
def get_current_user_posts():
    posts = post_service().posts_by_user(current_user.user_id)
    return jsonify([post.to_dict() for post in posts]), 200


@posts_bp.route('/user/<int:user_id>', methods=['GET'])
def get_other_user_posts(user_id):
    posts = post_service().posts_by_user(user_id)
    return jsonify([post.to_dict() for post in posts]), 200


@posts_bp.route('/<int:post_id>/like', methods=['PATCH'])
@jwt_required()
def toggle_like(post_id):
    post, outcome = post_service().toggle_like(post_id, current_user.user_id)
    liked = outcome != REMOVED
    return jsonify({
        "message": "Post liked successfully" if liked else "Post unliked successfully",
        "liked": liked,
        "post": post.to_dict(),
    }), 200


@posts_bp.route('/<int:post_id>/dislike', methods=['PATCH'])
@jwt_required()
def toggle_dislike(post_id):
    post, outcome = post_service().toggle_dislike(post_id, current_user.user_id)
    disliked = outcome != REMOVED
    return jsonify({
        "message": "Post disliked successfully" if disliked else "Post undisliked successfully",
        "disliked": disliked,
        "post": post.to_dict(),
    }), 200


@posts_bp.route('/<int:post_id>/comments', methods=['POST'])
@jwt_required()
def add_comment(post_id):
    post = post_service().add_comment(post_id, current_user, json_body().get('text'))
    return jsonify({"message": "Comment added successfully", "post": post.to_dict()}), 201


@posts_bp.route('/<int:post_id>', methods=['PATCH'])
@jwt_required()
def update_post(post_id):
    post = post_service().update_post(post_id, current_user, form_or_json(),
                                      request.files.get('image'))
    return jsonify({"message": "Post updated successfully", "post": post.to_dict()}), 200


@posts_bp.route('/<int:post_id>', methods=['DELETE'])
@jwt_required()
def delete_post(post_id):
    post_service().delete_post(post_id, current_user)
    return jsonify({"message": "Deleted"}), 200
