from fastapi import APIRouter, Depends

from starfood import schemas
from starfood.db import crud, models
from starfood.routes.base import get_current_user, success
from starfood.utils import formatters
from starfood.utils.security import AuthUser

router = APIRouter(prefix="/api/addresses", tags=["addresses"])


@router.get("")
async def list_addresses(user: AuthUser = Depends(get_current_user)):
    addresses = await crud.list_addresses(user.id)
    return success(
        "Addresses retrieved successfully", [formatters.address(a) for a in addresses]
    )


@router.get("/default")
async def default_address(user: AuthUser = Depends(get_current_user)):
    address = await crud.get_default_address(user.id)
    if address is None:
        return success("No default address set", None)
    return success("Default address retrieved successfully", formatters.address(address))


@router.get("/{address_id}")
async def get_address(address_id: int, user: AuthUser = Depends(get_current_user)):
    address = await crud.get_address(address_id, user.id)
    return success("Address retrieved successfully", formatters.address(address))


@router.post("")
async def create_address(
    req: schemas.AddressCreateRequest, user: AuthUser = Depends(get_current_user)
):
    address = await crud.create_address(user.id, **req.model_dump())
    return success("Address created successfully", formatters.address(address), 201)


@router.patch("/{address_id}")
async def update_address(
    address_id: int,
    req: schemas.AddressUpdateRequest,
    user: AuthUser = Depends(get_current_user),
):
    data = models.AddressUpdate(**req.model_dump(exclude_unset=True))
    address = await crud.update_address(address_id, user.id, data)
    return success("Address updated successfully", formatters.address(address))


@router.post("/{address_id}/default")
async def set_default(address_id: int, user: AuthUser = Depends(get_current_user)):
    address = await crud.set_default_address(address_id, user.id)
    return success("Default address updated successfully", formatters.address(address))


@router.delete("/{address_id}")
async def delete_address(address_id: int, user: AuthUser = Depends(get_current_user)):
    await crud.delete_address(address_id, user.id)
    return success("Address deleted successfully")
