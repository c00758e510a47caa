from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from app.database import get_db
from app.results import result_response
from app.schemas import SpaceCreate, SpaceResponse
from app.services import space_service

router = APIRouter(prefix="/api/v1/spaces", tags=["spaces"])

@router.post("", status_code=201, response_model=SpaceResponse)
async def create_space(data: SpaceCreate, db: AsyncSession = Depends(get_db)):
    try:
        space = await space_service.create_space(db, data)
    except IntegrityError:
        raise HTTPException(status_code=409, detail="A space with this code already exists")
    if space is None:
        raise HTTPException(status_code=404, detail="User not found")
    return space

@router.get("/{code}", response_model=SpaceResponse)
async def get_space(code: str, db: AsyncSession = Depends(get_db)):
    space = await space_service.get_space(db, code)
    if not space:
        raise HTTPException(status_code=404, detail="Space not found")
    return space

@router.get("/{code}/tree")
async def get_space_tree(code: str, db: AsyncSession = Depends(get_db)):
    return result_response(await space_service.get_space_tree(db, code))

@router.get("/{code}/count")
async def count_space_articles(code: str, db: AsyncSession = Depends(get_db)):
    return result_response(await space_service.count_articles(db, code))
