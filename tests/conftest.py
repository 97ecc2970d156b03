import datetime
import pytest
from flask import Flask
import contentapi
from contentapi import ColumnPermissionPolicy, JsonApi
from contentapi.access import VIEW, VIEW_LABEL
from contentapi.config import get_config

DB = contentapi.DB

article_tags = DB.Table(
    "article_tags",
    DB.Column("article_id", DB.Integer, DB.ForeignKey("articles.id"), primary_key=True),
    DB.Column("tag_id", DB.Integer, DB.ForeignKey("tags.id"), primary_key=True),
)


class Person(DB.Model):
    """
    description: people write articles and comments
    """

    __tablename__ = "people"
    id = DB.Column(DB.Integer, primary_key=True)
    name = DB.Column(DB.String(64), nullable=False)
    email = DB.Column(DB.String(64), info={"permissions": "w"})
    articles = DB.relationship("Article", back_populates="author")


class Article(DB.Model):
    """
    Articles titled "secret..." can only be seen by their label, "hidden..." articles can't be seen at all
    """

    __tablename__ = "articles"
    id = DB.Column(DB.Integer, primary_key=True)
    title = DB.Column(DB.String(128), nullable=False)
    body = DB.Column(DB.Text, default="")
    published = DB.Column(DB.Boolean, default=False)
    created = DB.Column(DB.Date, default=datetime.date(2024, 1, 1))
    author_id = DB.Column(DB.Integer, DB.ForeignKey("people.id"))
    author = DB.relationship("Person", back_populates="articles")
    tags = DB.relationship("Tag", secondary=article_tags, back_populates="articles")
    comments = DB.relationship("Comment", back_populates="article")

    def jsonapi_access(self, operation):
        if self.title.startswith("hidden"):
            return operation not in (VIEW, VIEW_LABEL)
        if self.title.startswith("secret"):
            return operation != VIEW
        return True


class Tag(DB.Model):
    __tablename__ = "tags"
    id = DB.Column(DB.Integer, primary_key=True)
    name = DB.Column(DB.String(32), nullable=False, unique=True)
    articles = DB.relationship("Article", secondary=article_tags, back_populates="tags")


class Comment(DB.Model):
    __tablename__ = "comments"
    id = DB.Column(DB.Integer, primary_key=True)
    body = DB.Column(DB.Text, nullable=False)
    article_id = DB.Column(DB.Integer, DB.ForeignKey("articles.id"), nullable=False)
    article = DB.relationship("Article", back_populates="comments")
    author_id = DB.Column(DB.Integer, DB.ForeignKey("people.id"))
    author = DB.relationship("Person")


def seed():
    alice = Person(id=1, name="Alice", email="alice@example.com")
    bob = Person(id=2, name="Bob", email="bob@example.com")
    news = Tag(id=1, name="news")
    tech = Tag(id=2, name="tech")
    first = Article(id=1, title="First", body="hello", published=True, author=alice, tags=[news, tech])
    second = Article(id=2, title="Second", body="world", author=bob, tags=[tech])
    third = Article(id=3, title="secret plans", body="...", author=alice)
    fourth = Article(id=4, title="hidden draft", body="...", author=bob)
    comments = [
        Comment(id=1, body="nice", article=first, author=bob),
        Comment(id=2, body="thanks", article=first, author=alice),
        Comment(id=3, body="hmm", article=second, author=alice),
    ]
    DB.session.add_all([alice, bob, news, tech, first, second, third, fourth] + comments)
    DB.session.commit()


@pytest.fixture(autouse=True)
def clear_config_cache():
    get_config.cache_clear()
    yield
    get_config.cache_clear()


@pytest.fixture
def app():
    app = Flask("contentapi-test")
    app.config.update(SQLALCHEMY_DATABASE_URI="sqlite://", TESTING=True)
    DB.init_app(app)
    with app.app_context():
        DB.create_all()
        seed()
        yield app
        DB.session.remove()
        DB.drop_all()


@pytest.fixture
def api(app):
    api = JsonApi(app, prefix="/api", policy=ColumnPermissionPolicy())
    api.expose(Person, Article, Tag, Comment)
    return api


@pytest.fixture
def client(app, api):
    return app.test_client()


@pytest.fixture
def repository(api):
    return api.repository


@pytest.fixture
def store(api):
    return api.store
