"""Read-only ride lookup."""
from fastapi import APIRouter, Depends

from ridebot.core.exceptions import BusinessError, RideNotFoundError
from ridebot.schemas.ride import RideRecord
from ridebot.services.ride_repository import RideRepository

router = APIRouter()


def get_repository() -> RideRepository:
    return RideRepository()


@router.get("/{ride_id}", response_model=RideRecord)
def get_ride(ride_id: str, repository: RideRepository = Depends(get_repository)):
    try:
        return repository.get(ride_id)
    except RideNotFoundError:
        raise BusinessError.not_found("Ride", reason=f"id={ride_id}")
    except Exception as e:
        raise BusinessError.server_error(e)
