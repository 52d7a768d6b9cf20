from typing import Annotated

from fastapi import Depends, Request

from faremesh.services.flight_search import FlightSearchService


def get_search_service(request: Request) -> FlightSearchService:
    """Il servizio è creato una volta nel lifespan e condiviso tra le richieste."""
    return request.app.state.search_service


SearchServiceDep = Annotated[FlightSearchService, Depends(get_search_service)]
