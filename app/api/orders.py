from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.responses import success_response
from app.db.session import get_db
from app.models.schemas import CreateOrderRequest, OrderOut, dump
from app.services import order_service


router = APIRouter(prefix="/api", tags=["orders"])


def _order_json(order) -> dict:
    return dump(OrderOut.model_validate(order))


@router.post("/orders")
def create_order(body: CreateOrderRequest, db: Session = Depends(get_db)) -> JSONResponse:
    order = order_service.create_order(db, body.customer_id, body.amount, body.currency)
    return success_response({"data": _order_json(order), "message": "Order created successfully"}, status_code=201)


@router.get("/orders/customer/{customer_id}")
def list_customer_orders(customer_id: str, db: Session = Depends(get_db)) -> JSONResponse:
    orders = order_service.get_orders_by_customer(db, customer_id)
    return success_response({"data": [_order_json(o) for o in orders], "count": len(orders)})


@router.get("/orders/{order_id}")
def get_order(order_id: str, db: Session = Depends(get_db)) -> JSONResponse:
    order = order_service.get_order_by_id(db, order_id)
    return success_response({"data": _order_json(order)})


@router.post("/orders/{order_id}/process")
def process_order(order_id: str, db: Session = Depends(get_db)) -> JSONResponse:
    order_service.process_order(db, order_id)
    return success_response({"message": "Order processed successfully", "orderId": order_id})


@router.post("/orders/{order_id}/cancel")
def cancel_order(order_id: str, db: Session = Depends(get_db)) -> JSONResponse:
    order_service.cancel_order(db, order_id)
    return success_response({"message": "Order cancelled successfully", "orderId": order_id})
