from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..catalog_service import CatalogService
from ..db import get_db
from ..schemas import CategoryCreate, CategoryOut, CategoryPatch
from ..security import Caller, require_admin

router = APIRouter()


@router.get("", response_model=list[CategoryOut])
def list_categories(db: Session = Depends(get_db)):
    return CatalogService(db).list_categories()


@router.get("/{category_id}", response_model=CategoryOut)
def get_category(category_id: int, db: Session = Depends(get_db)):
    return CatalogService(db).get_category(category_id)


@router.post("", response_model=CategoryOut, status_code=201)
def create_category(payload: CategoryCreate, _: Caller = Depends(require_admin), db: Session = Depends(get_db)):
    return CatalogService(db).create_category(payload)


@router.put("/{category_id}", response_model=CategoryOut)
def update_category(
    category_id: int,
    payload: CategoryPatch,
    _: Caller = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return CatalogService(db).update_category(category_id, payload)


@router.delete("/{category_id}")
def delete_category(category_id: int, _: Caller = Depends(require_admin), db: Session = Depends(get_db)):
    CatalogService(db).delete_category(category_id)
    return {"message": "Category deleted successfully"}
