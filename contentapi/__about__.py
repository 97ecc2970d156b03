__version__ = "0.4.0"
__description__ = "contentapi : JSON:API documents for SqlAlchemy content repositories"
