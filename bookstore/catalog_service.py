import logging

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from .errors import Conflict, NotFound, ValidationError
from .models import Book, Category, OrderItem
from .schemas import BookCreate, BookOut, BookPatch, CategoryCreate, CategoryOut, CategoryPatch

logger = logging.getLogger(__name__)

# Patch rules per field kind:
#   required text: applied only when sent and non-empty
#   nullable text: applied when sent and not null ("" clears the value)
#   typed values:  applied when sent and not null
_BOOK_NON_EMPTY = ("title", "author", "publisher")
_BOOK_NOT_NULL = ("isbn", "description", "image_url", "category_id", "price",
                  "stock_quantity", "publication_date")


def to_book_out(b: Book) -> BookOut:
    return BookOut(
        id=b.id,
        title=b.title,
        author=b.author,
        isbn=b.isbn,
        category_id=b.category_id,
        category_name=b.category.name if b.category else None,
        description=b.description,
        price=float(b.price),
        stock_quantity=b.stock_quantity,
        image_url=b.image_url,
        publication_date=b.publication_date,
        publisher=b.publisher,
        created_at=b.created_at,
        updated_at=b.updated_at,
    )


def to_category_out(c: Category, book_count: int) -> CategoryOut:
    return CategoryOut(
        id=c.id,
        name=c.name,
        description=c.description,
        created_at=c.created_at,
        book_count=book_count,
    )


def apply_patch(target, patch, non_empty=(), not_null=()) -> list[str]:
    """
    Copy the fields present in `patch` onto `target`.
    Returns the names of the fields actually applied.
    """
    sent = patch.model_dump(exclude_unset=True)
    applied = []
    for field, value in sent.items():
        if field in non_empty and not value:
            continue
        if field in not_null and value is None:
            continue
        if field not in non_empty and field not in not_null:
            continue
        setattr(target, field, value)
        applied.append(field)
    return applied


class CatalogService:
    def __init__(self, db: Session):
        self.db = db

    # --- books ---

    def _get_book(self, book_id: int) -> Book:
        b = (
            self.db.query(Book)
            .options(joinedload(Book.category))
            .filter(Book.id == book_id)
            .first()
        )
        if not b:
            raise NotFound("Book not found")
        return b

    def _require_category(self, category_id: int | None) -> None:
        if category_id is not None and self.db.get(Category, category_id) is None:
            raise ValidationError("Category not found")

    def list_books(self, category_id: int | None = None, search: str | None = None) -> list[BookOut]:
        q = self.db.query(Book).options(joinedload(Book.category))
        if category_id is not None:
            q = q.filter(Book.category_id == category_id)
        if search:
            # Plain substring match: % and _ in the input are literal characters
            q = q.filter(or_(
                Book.title.icontains(search, autoescape=True),
                Book.author.icontains(search, autoescape=True),
            ))
        return [to_book_out(b) for b in q.order_by(Book.id).all()]

    def get_book(self, book_id: int) -> BookOut:
        return to_book_out(self._get_book(book_id))

    def create_book(self, payload: BookCreate) -> BookOut:
        self._require_category(payload.category_id)
        b = Book(**payload.model_dump())
        self.db.add(b)
        self.db.commit()
        logger.info("created book id=%s title=%r", b.id, b.title)
        return self.get_book(b.id)

    def update_book(self, book_id: int, patch: BookPatch) -> BookOut:
        b = self._get_book(book_id)
        if patch.category_id is not None:
            self._require_category(patch.category_id)

        applied = apply_patch(b, patch, non_empty=_BOOK_NON_EMPTY, not_null=_BOOK_NOT_NULL)
        self.db.commit()
        logger.info("updated book id=%s fields=%s", book_id, applied)
        return self.get_book(book_id)

    def delete_book(self, book_id: int) -> None:
        b = self._get_book(book_id)
        referenced = (
            self.db.query(OrderItem.id).filter(OrderItem.book_id == book_id).first() is not None
        )
        if referenced:
            raise Conflict("Cannot delete book that is referenced by orders")

        self.db.delete(b)
        self.db.commit()
        logger.info("deleted book id=%s", book_id)

    # --- categories ---

    def _count_books(self, category_id: int) -> int:
        return (
            self.db.query(func.count(Book.id))
            .filter(Book.category_id == category_id)
            .scalar()
        )

    def _get_category(self, category_id: int) -> Category:
        c = self.db.get(Category, category_id)
        if not c:
            raise NotFound("Category not found")
        return c

    def list_categories(self) -> list[CategoryOut]:
        counts = dict(
            self.db.query(Book.category_id, func.count(Book.id))
            .filter(Book.category_id.is_not(None))
            .group_by(Book.category_id)
            .all()
        )
        rows = self.db.query(Category).order_by(Category.id).all()
        return [to_category_out(c, counts.get(c.id, 0)) for c in rows]

    def get_category(self, category_id: int) -> CategoryOut:
        c = self._get_category(category_id)
        return to_category_out(c, self._count_books(c.id))

    def create_category(self, payload: CategoryCreate) -> CategoryOut:
        c = Category(name=payload.name, description=payload.description)
        self.db.add(c)
        self.db.commit()
        self.db.refresh(c)
        logger.info("created category id=%s name=%r", c.id, c.name)
        return to_category_out(c, 0)

    def update_category(self, category_id: int, patch: CategoryPatch) -> CategoryOut:
        c = self._get_category(category_id)
        apply_patch(c, patch, non_empty=("name",), not_null=("description",))
        self.db.commit()
        self.db.refresh(c)
        return to_category_out(c, self._count_books(c.id))

    def delete_category(self, category_id: int) -> None:
        c = self._get_category(category_id)
        if self._count_books(c.id) > 0:
            raise Conflict("Cannot delete category that contains books")

        self.db.delete(c)
        self.db.commit()
        logger.info("deleted category id=%s", category_id)
