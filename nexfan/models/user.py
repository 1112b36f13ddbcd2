from datetime import datetime
from dataclasses import dataclass, asdict

import bcrypt
from flask_login import UserMixin

from nexfan import db


class Role:
    USER = 'USER'
    CREATOR = 'CREATOR'
    ADMIN = 'ADMIN'

    ALL = (USER, CREATOR, ADMIN)


class User(UserMixin, db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    name = db.Column(db.String(100))
    password_hash = db.Column(db.String(128))
    role = db.Column(db.String(20), nullable=False, default=Role.USER)  # USER, CREATOR, ADMIN
    avatar = db.Column(db.String(500))
    bio = db.Column(db.Text)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relacionamentos
    creator_profile = db.relationship('CreatorProfile', back_populates='user', uselist=False,
                                      cascade='all, delete-orphan')
    subscriptions = db.relationship('Subscription', back_populates='user', lazy='dynamic',
                                    cascade='all, delete-orphan')

    def set_password(self, password):
        self.password_hash = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')

    def check_password(self, password):
        if not self.password_hash or not password:
            return False
        try:
            return bcrypt.checkpw(password.encode('utf-8'), self.password_hash.encode('utf-8'))
        except ValueError:
            return False

    @property
    def is_admin(self):
        return self.role == Role.ADMIN

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'role': self.role,
            'avatar': self.avatar,
            'bio': self.bio,
            'isActive': self.is_active,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<User {self.email} - {self.role}>'


@dataclass
class SocialLinks:
    """Links sociais do criador, persistidos como JSON"""
    twitter: str = ''
    instagram: str = ''
    youtube: str = ''
    website: str = ''

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        return cls(**{key: data.get(key) or '' for key in ('twitter', 'instagram', 'youtube', 'website')})

    def to_dict(self):
        return asdict(self)


class CreatorProfile(db.Model):
    __tablename__ = 'creator_profiles'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), unique=True, nullable=False)
    display_name = db.Column(db.String(50), nullable=False)
    slug = db.Column(db.String(30), unique=True, nullable=False, index=True)
    social_links_json = db.Column('social_links', db.JSON, default=dict)
    cover_image = db.Column(db.String(500))
    stripe_account_id = db.Column(db.String(100))
    is_verified = db.Column(db.Boolean, default=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relacionamentos
    user = db.relationship('User', back_populates='creator_profile')
    plans = db.relationship('Plan', back_populates='creator', lazy='dynamic', cascade='all, delete-orphan')
    posts = db.relationship('Post', back_populates='creator', lazy='dynamic', cascade='all, delete-orphan')
    subscribers = db.relationship('Subscription', back_populates='creator', lazy='dynamic',
                                  cascade='all, delete-orphan')

    @property
    def social_links(self):
        return SocialLinks.from_dict(self.social_links_json)

    @social_links.setter
    def social_links(self, links):
        if isinstance(links, SocialLinks):
            links = links.to_dict()
        self.social_links_json = SocialLinks.from_dict(links).to_dict()

    def to_dict(self):
        return {
            'id': self.id,
            'userId': self.user_id,
            'displayName': self.display_name,
            'slug': self.slug,
            'avatar': self.user.avatar if self.user else None,
            'bio': self.user.bio if self.user else None,
            'coverImage': self.cover_image,
            'socialLinks': self.social_links.to_dict(),
            'isVerified': self.is_verified,
            'isActive': self.is_active,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<CreatorProfile {self.slug}>'
