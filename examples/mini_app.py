#!/usr/bin/env python
# run:
# $ FLASK_APP=mini_app flask run
# $ curl 'http://127.0.0.1:5000/api/books?include=author&filter[author.name]=Ursula'
from flask import Flask
from contentapi import DB, ColumnPermissionPolicy, JsonApi


class Author(DB.Model):
    __tablename__ = "authors"
    id = DB.Column(DB.Integer, primary_key=True)
    name = DB.Column(DB.String, nullable=False)
    books = DB.relationship("Book", back_populates="author")


class Book(DB.Model):
    """
    description: unpublished books are only listed by their title
    """

    __tablename__ = "books"
    id = DB.Column(DB.Integer, primary_key=True)
    title = DB.Column(DB.String, nullable=False)
    published = DB.Column(DB.Boolean, default=True)
    author_id = DB.Column(DB.Integer, DB.ForeignKey("authors.id"))
    author = DB.relationship("Author", back_populates="books")

    def jsonapi_access(self, operation):
        return operation != "view" or self.published


def create_api(app, prefix="/api"):
    api = JsonApi(app, prefix=prefix, policy=ColumnPermissionPolicy())
    api.expose(Author, Book)
    author = Author(name="Ursula")
    DB.session.add(author)
    DB.session.add(Book(title="The Dispossessed", author=author))
    DB.session.add(Book(title="Work in progress", author=author, published=False))
    DB.session.commit()
    print(f"Starting API: http://127.0.0.1:5000{prefix}")


def create_app():
    app = Flask("demo_app")
    app.config.update(SQLALCHEMY_DATABASE_URI="sqlite://")
    DB.init_app(app)
    with app.app_context():
        DB.create_all()
        create_api(app)
    return app


app = create_app()

if __name__ == "__main__":
    app.run()
