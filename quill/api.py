from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from .errors import NotFoundError, RepositoryError
from .repository import PostRepository


bp = Blueprint("api", __name__)

_STATUS_CODES = {
    "not_found": 404,
    "validation": 422,
    "permission_denied": 403,
    "conflict": 409,
    "dependency": 502,
}


def get_repository() -> PostRepository:
    return current_app.extensions["repository"]


@bp.errorhandler(RepositoryError)
def handle_repository_error(exc: RepositoryError):
    status = _STATUS_CODES.get(exc.kind, 500)
    if status >= 500:
        current_app.logger.error("Request to %s failed: %s", request.path, exc)
    return jsonify(exc.to_dict()), status


def _can_edit_any_post() -> bool:
    return bool(getattr(current_user, "can_edit_any_post", False))


@bp.route("/posts", methods=["GET"])
def browse():
    return jsonify(get_repository().find_page(**request.args.to_dict()))


@bp.route("/posts/<int:post_id>", methods=["GET"])
def read(post_id: int):
    post = get_repository().find_one(
        {"id": post_id, "status": request.args.get("status", "published")},
        include=request.args.get("include"),
    )
    if post is None:
        raise NotFoundError("Post not found", id=post_id)
    return jsonify(post)


@bp.route("/posts/slug/<slug>", methods=["GET"])
def read_by_slug(slug: str):
    post = get_repository().find_one(
        {"slug": slug, "status": request.args.get("status", "published")},
        include=request.args.get("include"),
    )
    if post is None:
        raise NotFoundError("Post not found", slug=slug)
    return jsonify(post)


@bp.route("/posts", methods=["POST"])
@login_required
def create():
    payload = request.get_json(silent=True) or {}
    post = get_repository().add(payload, user=current_user.id)
    return jsonify(post), 201


@bp.route("/posts/<int:post_id>", methods=["PUT"])
@login_required
def update(post_id: int):
    repository = get_repository()
    repository.authorize(post_id, {"user": current_user.id}, _can_edit_any_post(), True)
    payload = request.get_json(silent=True) or {}
    return jsonify(repository.edit(post_id, payload, user=current_user.id))


@bp.route("/posts/<int:post_id>", methods=["DELETE"])
@login_required
def delete(post_id: int):
    repository = get_repository()
    repository.authorize(post_id, {"user": current_user.id}, _can_edit_any_post(), True)
    repository.destroy(post_id, user=current_user.id)
    return "", 204
