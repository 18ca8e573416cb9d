# Post interaction: create/edit/delete posts, likes, dislikes and comments
import logging

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from errors import Forbidden, NotFound, StorageUnavailable, ValidationFailure
from forms import COMMENT_MAX_LENGTH, POST_MAX_LENGTH, clean_text
from models import db, Comment, DISLIKE, LIKE, Post, Reaction, User, utcnow

logger = logging.getLogger(__name__)

ADDED = 'added'
REMOVED = 'removed'
SWITCHED = 'switched'
TOGGLE_ATTEMPTS = 3

OPPOSITE = {LIKE: DISLIKE, DISLIKE: LIKE}


def _newest_first(stmt):
    # post_id breaks ties between posts created in the same instant
    return stmt.order_by(Post.created_at.desc(), Post.post_id.desc())


def _with_collections(stmt):
    return stmt.options(selectinload(Post.reactions), selectinload(Post.comments))


class PostService:
    def __init__(self, image_store, max_page_size=50):
        self.image_store = image_store
        self.max_page_size = max_page_size

    def get_post(self, post_id):
        post = db.session.get(Post, post_id)
        if post is None:
            raise NotFound("Post not found")
        return post

    def _owned_post(self, post_id, requester):
        post = self.get_post(post_id)
        if post.user_id != requester.user_id:
            raise Forbidden()
        return post

    def create_post(self, author, text, image=None, image_url=None):
        text = clean_text(text, 'text', POST_MAX_LENGTH)
        post = Post(user_id=author.user_id, text=text,
                    image_url=self.image_store.resolve(image, image_url) or None)
        db.session.add(post)
        db.session.commit()
        return post

    def update_post(self, post_id, requester, form, image=None):
        """Owner-only edit; ownership is checked before anything in the payload."""
        post = self._owned_post(post_id, requester)
        if 'text' in form:
            post.text = clean_text(form.get('text'), 'text', POST_MAX_LENGTH)
        image_url = self.image_store.resolve(image, form.get('image'))
        if image_url is not None:
            post.image_url = image_url or None
        db.session.commit()
        return post

    def delete_post(self, post_id, requester):
        post = self._owned_post(post_id, requester)
        db.session.delete(post)
        db.session.commit()
        logger.info("Post %s deleted by owner %s", post_id, requester.user_id)

    def toggle_reaction(self, post_id, user_id, kind):
        """Flip the user's `kind` reaction on a post, dropping the opposite one.

        Each step is a single conditional statement, so concurrent toggles on
        the same post never overwrite each other. Returns (post, outcome).
        """
        opposite = OPPOSITE[kind]
        mine = (Reaction.post_id == post_id, Reaction.user_id == user_id)

        for _ in range(TOGGLE_ATTEMPTS):
            self.get_post(post_id)
            try:
                if db.session.execute(delete(Reaction).where(*mine, Reaction.kind == kind)).rowcount:
                    outcome = REMOVED
                elif db.session.execute(update(Reaction).where(*mine, Reaction.kind == opposite)
                                        .values(kind=kind, created_at=utcnow())).rowcount:
                    outcome = SWITCHED
                else:
                    db.session.execute(insert(Reaction).values(post_id=post_id, user_id=user_id,
                                                               kind=kind, created_at=utcnow()))
                    outcome = ADDED
                db.session.commit()
            except IntegrityError:
                # A concurrent toggle wrote first; start over from its state
                db.session.rollback()
                continue
            return self.get_post(post_id), outcome

        logger.warning("Gave up toggling %s on post %s for user %s", kind, post_id, user_id)
        raise StorageUnavailable()

    def toggle_like(self, post_id, user_id):
        return self.toggle_reaction(post_id, user_id, LIKE)

    def toggle_dislike(self, post_id, user_id):
        return self.toggle_reaction(post_id, user_id, DISLIKE)

    def add_comment(self, post_id, author, text):
        post = self.get_post(post_id)
        text = clean_text(text, 'text', COMMENT_MAX_LENGTH)
        db.session.add(Comment(post_id=post.post_id, user_id=author.user_id, text=text,
                               created_at=utcnow()))
        db.session.commit()
        return post

    def feed(self, page, limit):
        if limit > self.max_page_size:
            raise ValidationFailure(f"limit must be at most {self.max_page_size}")
        stmt = _with_collections(_newest_first(select(Post)))
        return db.paginate(stmt, page=page, per_page=limit,
                           max_per_page=self.max_page_size, error_out=False)

    def posts_by_user(self, user_id):
        if db.session.get(User, user_id) is None:
            raise NotFound("User not found")
        stmt = _with_collections(_newest_first(select(Post).where(Post.user_id == user_id)))
        return db.session.scalars(stmt).all()
