from datetime import datetime
from nexfan import db


class Post(db.Model):
    __tablename__ = 'posts'

    id = db.Column(db.Integer, primary_key=True)
    creator_id = db.Column(db.Integer, db.ForeignKey('creator_profiles.id'), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    content = db.Column(db.Text)
    is_public = db.Column(db.Boolean, default=False)
    is_pinned = db.Column(db.Boolean, default=False)
    published_at = db.Column(db.DateTime, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relacionamentos
    creator = db.relationship('CreatorProfile', back_populates='posts')
    media = db.relationship('PostMedia', back_populates='post', order_by='PostMedia.sort_order',
                            cascade='all, delete-orphan')
    plan_access = db.relationship('PostPlanAccess', back_populates='post', cascade='all, delete-orphan')
    likes = db.relationship('Like', back_populates='post', lazy='dynamic', cascade='all, delete-orphan')
    saves = db.relationship('SavedPost', back_populates='post', lazy='dynamic', cascade='all, delete-orphan')
    comments = db.relationship('Comment', back_populates='post', lazy='dynamic', cascade='all, delete-orphan',
                               order_by='Comment.created_at.desc()')

    @property
    def plan_ids(self):
        """Conjunto de planos com acesso ao post (vazio = qualquer assinante)"""
        return {access.plan_id for access in self.plan_access}

    def __repr__(self):
        return f'<Post {self.title}>'


class PostMedia(db.Model):
    __tablename__ = 'post_media'

    id = db.Column(db.Integer, primary_key=True)
    post_id = db.Column(db.Integer, db.ForeignKey('posts.id'), nullable=False, index=True)
    url = db.Column(db.String(500), nullable=False)
    type = db.Column(db.String(20), nullable=False)  # IMAGE, VIDEO
    sort_order = db.Column(db.Integer, default=0)

    post = db.relationship('Post', back_populates='media')

    def to_dict(self):
        return {'id': self.id, 'url': self.url, 'type': self.type, 'sortOrder': self.sort_order}


class PostPlanAccess(db.Model):
    __tablename__ = 'post_plan_access'
    __table_args__ = (db.UniqueConstraint('post_id', 'plan_id', name='uq_post_plan_access'),)

    id = db.Column(db.Integer, primary_key=True)
    post_id = db.Column(db.Integer, db.ForeignKey('posts.id'), nullable=False)
    plan_id = db.Column(db.Integer, db.ForeignKey('plans.id'), nullable=False)

    post = db.relationship('Post', back_populates='plan_access')
    plan = db.relationship('Plan')


class Like(db.Model):
    __tablename__ = 'likes'
    __table_args__ = (db.UniqueConstraint('post_id', 'user_id', name='uq_like_post_user'),)

    id = db.Column(db.Integer, primary_key=True)
    post_id = db.Column(db.Integer, db.ForeignKey('posts.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    post = db.relationship('Post', back_populates='likes')


class SavedPost(db.Model):
    __tablename__ = 'saved_posts'
    __table_args__ = (db.UniqueConstraint('post_id', 'user_id', name='uq_saved_post_user'),)

    id = db.Column(db.Integer, primary_key=True)
    post_id = db.Column(db.Integer, db.ForeignKey('posts.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    post = db.relationship('Post', back_populates='saves')


class Comment(db.Model):
    __tablename__ = 'comments'

    id = db.Column(db.Integer, primary_key=True)
    post_id = db.Column(db.Integer, db.ForeignKey('posts.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    post = db.relationship('Post', back_populates='comments')
    user = db.relationship('User')

    def to_dict(self):
        return {
            'id': self.id,
            'postId': self.post_id,
            'content': self.content,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'user': {
                'id': self.user.id,
                'name': self.user.name or 'Usuário',
                'avatar': self.user.avatar,
            } if self.user else None,
        }

    def __repr__(self):
        return f'<Comment {self.id} on {self.post_id}>'
