from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..catalog_service import CatalogService
from ..db import get_db
from ..schemas import BookCreate, BookOut, BookPatch
from ..security import Caller, require_admin

router = APIRouter()


# Public catalog
@router.get("", response_model=list[BookOut])
def list_books(
    category_id: int | None = Query(default=None, alias="categoryId"),
    search: str | None = None,
    db: Session = Depends(get_db),
):
    return CatalogService(db).list_books(category_id=category_id, search=search)


@router.get("/{book_id}", response_model=BookOut)
def get_book(book_id: int, db: Session = Depends(get_db)):
    return CatalogService(db).get_book(book_id)


# Admin endpoints
@router.post("", response_model=BookOut, status_code=201)
def create_book(payload: BookCreate, _: Caller = Depends(require_admin), db: Session = Depends(get_db)):
    return CatalogService(db).create_book(payload)


@router.put("/{book_id}", response_model=BookOut)
def update_book(book_id: int, payload: BookPatch, _: Caller = Depends(require_admin), db: Session = Depends(get_db)):
    return CatalogService(db).update_book(book_id, payload)


@router.delete("/{book_id}")
def delete_book(book_id: int, _: Caller = Depends(require_admin), db: Session = Depends(get_db)):
    CatalogService(db).delete_book(book_id)
    return {"message": "Book deleted successfully"}
