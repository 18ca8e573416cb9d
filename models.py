# Database models
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.dialects import mysql
from sqlalchemy.orm import deferred

db = SQLAlchemy()

# MySQL DATETIME drops microseconds unless asked for them
Timestamp = db.DateTime().with_variant(mysql.DATETIME(fsp=6), 'mysql')

LIKE = 'like'
DISLIKE = 'dislike'


def utcnow():
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value):
    return value.isoformat() + 'Z' if value else None


class User(db.Model):
    __tablename__ = 'Users'
    user_id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(50), nullable=False)
    last_name = db.Column(db.String(50), nullable=False)
    email = db.Column(db.String(254), unique=True, nullable=False, index=True)
    password_hash = deferred(db.Column(db.String(255), nullable=False))
    is_verified = db.Column(db.Boolean, nullable=False, default=False)
    bio = db.Column(db.String(500), nullable=False, default='')
    avatar_url = db.Column(db.String(500), nullable=False, default='')

    # Write-mostly secrets, only loaded when touched
    otp_hash = deferred(db.Column(db.String(255)))
    otp_expires_at = deferred(db.Column(Timestamp))
    password_reset_hash = deferred(db.Column(db.String(64), index=True))
    password_reset_expires_at = deferred(db.Column(Timestamp))

    created_at = db.Column(Timestamp, nullable=False, default=utcnow)
    updated_at = db.Column(Timestamp, nullable=False, default=utcnow, onupdate=utcnow)

    posts = db.relationship('Post', back_populates='author', lazy='dynamic')

    def public_dict(self):
        return {
            "_id": self.user_id,
            "id": self.user_id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "bio": self.bio,
            "avatarUrl": self.avatar_url,
            "createdAt": isoformat(self.created_at),
        }

    def private_dict(self):
        data = self.public_dict()
        data["email"] = self.email
        return data


class Post(db.Model):
    __tablename__ = 'Posts'
    post_id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('Users.user_id', ondelete='CASCADE'),
                        nullable=False, index=True)
    text = db.Column(db.Text, nullable=False)
    image_url = db.Column(db.String(500))
    created_at = db.Column(Timestamp, nullable=False, default=utcnow, index=True)
    updated_at = db.Column(Timestamp, nullable=False, default=utcnow, onupdate=utcnow)

    author = db.relationship('User', back_populates='posts', lazy='joined')
    reactions = db.relationship('Reaction', back_populates='post',
                                cascade='all, delete-orphan',
                                order_by=lambda: [Reaction.created_at, Reaction.reaction_id])
    comments = db.relationship('Comment', back_populates='post',
                               cascade='all, delete-orphan',
                               order_by=lambda: [Comment.created_at, Comment.comment_id])

    @property
    def likers(self):
        return [r.user_id for r in self.reactions if r.kind == LIKE]

    @property
    def dislikers(self):
        return [r.user_id for r in self.reactions if r.kind == DISLIKE]

    def to_dict(self):
        return {
            "_id": self.post_id,
            "id": self.post_id,
            "user": self.author.public_dict(),
            "text": self.text,
            "image": self.image_url,
            "likes": self.likers,
            "dislikes": self.dislikers,
            "comments": [comment.to_dict() for comment in self.comments],
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }


class Reaction(db.Model):
    """A like or a dislike; one row per (post, user) keeps them exclusive."""
    __tablename__ = 'Reactions'
    __table_args__ = (
        db.UniqueConstraint('post_id', 'user_id', name='uq_reaction_post_user'),
        db.CheckConstraint("kind IN ('like', 'dislike')", name='ck_reaction_kind'),
    )
    reaction_id = db.Column(db.Integer, primary_key=True)
    post_id = db.Column(db.Integer, db.ForeignKey('Posts.post_id', ondelete='CASCADE'),
                        nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('Users.user_id', ondelete='CASCADE'),
                        nullable=False)
    kind = db.Column(db.String(10), nullable=False)
    created_at = db.Column(Timestamp, nullable=False, default=utcnow)

    post = db.relationship('Post', back_populates='reactions')


class Comment(db.Model):
    __tablename__ = 'Comments'
    comment_id = db.Column(db.Integer, primary_key=True)
    post_id = db.Column(db.Integer, db.ForeignKey('Posts.post_id', ondelete='CASCADE'),
                        nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('Users.user_id', ondelete='CASCADE'),
                        nullable=False)
    text = db.Column(db.Text, nullable=False)
    created_at = db.Column(Timestamp, nullable=False, default=utcnow)

    post = db.relationship('Post', back_populates='comments')
    author = db.relationship('User', lazy='joined')

    def to_dict(self):
        return {
            "_id": self.comment_id,
            "id": self.comment_id,
            "user": self.author.public_dict(),
            "text": self.text,
            "createdAt": isoformat(self.created_at),
        }


class RevokedToken(db.Model):
    """Session tokens invalidated by logout, kept until they would expire anyway."""
    __tablename__ = 'RevokedTokens'
    token_id = db.Column(db.Integer, primary_key=True)
    jti = db.Column(db.String(64), unique=True, nullable=False, index=True)
    expires_at = db.Column(Timestamp, nullable=False)
    created_at = db.Column(Timestamp, nullable=False, default=utcnow)
