"""Minimal deterministic OpenAPI document for the repair tracker.

Scope (purposefully narrow):
- Staff endpoints with their required permission codes (x-required-permissions)
- Customer-facing endpoints (no security)
- Repair and estimate state machines as x-transitions on their schemas
"""
from typing import Any, Dict, Optional
from .constants.permissions import PERM_READ, PERM_MANAGE, PERM_ADMIN
from .constants.statuses import RepairStatus, EstimateStatus, NotificationPreference, WarrantyStatus, PaymentMode, Ear

__all__ = ["build_openapi_spec"]


def _caching_headers() -> Dict[str, Any]:
    return {
        "ETag": {"schema": {"type": "string"}},
        "Last-Modified": {"schema": {"type": "string"}},
        "X-Last-Modified-ISO": {"schema": {"type": "string"}},
        "Cache-Control": {"schema": {"type": "string"}},
    }


def _rate_limit_headers() -> Dict[str, Any]:
    return {h: {"schema": {"type": "string"}} for h in ("X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After")}


def _ref(name: str) -> Dict[str, str]:
    return {"$ref": f"#/components/schemas/{name}"}


def _op(summary: str, perm: Optional[str] = None, body: Optional[str] = None, ok: str = "200",
        ok_schema: Optional[str] = None, headers: Optional[Dict[str, Any]] = None, params=None, errors=("400", "404")) -> Dict[str, Any]:
    op: Dict[str, Any] = {"summary": summary, "responses": {}}
    ok_resp: Dict[str, Any] = {"description": "OK"}
    if ok_schema:
        ok_resp["content"] = {"application/json": {"schema": _ref(ok_schema)}}
    if headers:
        ok_resp["headers"] = headers
    op["responses"][ok] = ok_resp
    for code in errors:
        op["responses"][code] = {"description": "Error", "content": {"application/json": {"schema": _ref("Failure")}}}
    if perm:
        op["x-required-permissions"] = [perm]
        op["responses"].setdefault("401", {"description": "Unauthorized"})
        op["responses"].setdefault("403", {"description": "Forbidden"})
    else:
        op["security"] = []
    if body:
        op["requestBody"] = {"required": True, "content": {"application/json": {"schema": _ref(body)}}}
    if params:
        op["parameters"] = params
    return op


def _q(name: str, type_: str = "string", required: bool = False) -> Dict[str, Any]:
    return {"name": name, "in": "query", "required": required, "schema": {"type": type_}}


def _path_id() -> Dict[str, Any]:
    return {"name": "id", "in": "path", "required": True, "schema": {"type": "integer"}}


def _enum(enum_cls) -> Dict[str, Any]:
    return {"type": "string", "enum": list(enum_cls.labels())}


def _schemas() -> Dict[str, Any]:
    nullable_str = {"type": "string", "nullable": True}
    stamp = {"type": "string", "format": "date-time", "nullable": True}
    repair = {
        "type": "object",
        "properties": {
            "id": {"type": "integer"},
            "repair_id": {"type": "string", "pattern": r"^REP\d{10}$"},
            "status": _enum(RepairStatus),
            "patient_name": {"type": "string"},
            "phone": {"type": "string", "minLength": 10},
            "company": nullable_str,
            "email": nullable_str,
            "notification_preference": _enum(NotificationPreference),
            "model_item_name": {"type": "string"},
            "serial_no": {"type": "string"},
            "quantity": {"type": "integer", "minimum": 1},
            "warranty": _enum(WarrantyStatus),
            "ear": _enum(Ear),
            "mould": nullable_str,
            "purpose": {"type": "string"},
            "date_of_receipt": stamp,
            "date_out_to_manufacturer": stamp,
            "date_received_from_manufacturer": stamp,
            "date_out_to_customer": stamp,
            "repair_estimate": {"type": "number", "minimum": 0, "nullable": True},
            "estimate_status": _enum(EstimateStatus),
            "estimate_approval_date": stamp,
            "customer_paid": {"type": "number", "minimum": 0, "nullable": True},
            "payment_mode": _enum(PaymentMode),
            "programming_done": {"type": "boolean"},
            "remarks": nullable_str,
            "created_at": stamp,
            "updated_at": stamp,
            "version": {"type": "integer"},
        },
        "required": ["id", "repair_id", "status", "estimate_status"],
        "x-transitions": list(RepairStatus.labels()),
    }
    return {
        "Repair": repair,
        "Customer": {
            "type": "object",
            "properties": {
                "id": {"type": "integer"},
                "name": {"type": "string"},
                "phone": {"type": "string", "minLength": 10},
                "company": nullable_str,
                "created_at": stamp,
                "updated_at": stamp,
                "repairs": {"type": "array", "items": _ref("Repair")},
            },
            "required": ["id", "name", "phone"],
        },
        "CustomerInput": {
            "type": "object",
            "properties": {"name": {"type": "string"}, "phone": {"type": "string", "minLength": 10}, "company": nullable_str},
            "required": ["name", "phone"],
        },
        "Estimate": {
            "type": "object",
            "properties": {"estimate_status": _enum(EstimateStatus)},
            "x-transitions": list(EstimateStatus.labels()),
        },
        "RepairInput": {
            "type": "object",
            "properties": {k: v for k, v in repair["properties"].items() if k not in ("id", "repair_id", "version")},
            "required": ["patient_name", "phone", "model_item_name", "serial_no", "warranty", "purpose"],
        },
        "RepairUpdate": {
            "type": "object",
            "properties": {"id": {"type": "integer"}, "status": _enum(RepairStatus)},
            "required": ["id"],
            "additionalProperties": True,
        },
        "EstimateDecision": {
            "type": "object",
            "properties": {"repairId": {"type": "string"}, "status": {"type": "string", "enum": ["Approved", "Declined"]}},
            "required": ["repairId", "status"],
        },
        "NotificationPreferences": {
            "type": "object",
            "properties": {"repairId": {"type": "string"}, "preference": _enum(NotificationPreference), "email": nullable_str},
            "required": ["repairId", "preference"],
        },
        "PhoneLookup": {"type": "object", "properties": {"phone": {"type": "string"}}, "required": ["phone"]},
        "Login": {
            "type": "object",
            "properties": {"email": {"type": "string"}, "password": {"type": "string"}},
            "required": ["email", "password"],
        },
        "Mutation": {
            "type": "object",
            "properties": {
                "success": {"type": "boolean"},
                "message": {"type": "string"},
                "data": {"type": "object"},
                "warnings": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["success", "message"],
        },
        "Failure": {
            "type": "object",
            "properties": {"success": {"type": "boolean"}, "message": {"type": "string"}, "code": {"type": "string"}},
            "required": ["success", "message", "code"],
        },
        "DashboardStats": {
            "type": "object",
            "properties": {
                "statusCounts": {"type": "array", "items": {"type": "object"}},
                "dailyCounts": {"type": "array", "items": {"type": "object"}},
                "total": {"type": "integer"},
                "timestamp": {"type": "string", "format": "date-time"},
            },
        },
        "Pagination": {
            "type": "object",
            "properties": {
                "total": {"type": "integer"},
                "limit": {"type": "integer"},
                "offset": {"type": "integer"},
                "returned": {"type": "integer"},
            },
            "required": ["total", "limit", "offset", "returned"],
        },
    }


def build_openapi_spec() -> Dict[str, Any]:
    list_params = [_q("limit", "integer"), _q("offset", "integer"), _q("sort"), _q("status"), _q("estimate_status"), _q("phone"), _q("q")]
    paths: Dict[str, Any] = {
        "/auth/login": {"post": _op("Staff login", body="Login", errors=("400", "401"))},
        "/auth/me": {"get": _op("Current staff user", perm=PERM_READ, errors=())},
        "/repairs": {
            "get": _op("List repairs", perm=PERM_READ, headers=_caching_headers(), params=list_params, errors=("400",)),
            "post": _op("Create repair", perm=PERM_MANAGE, body="RepairInput", ok="201", ok_schema="Mutation", errors=("400", "500")),
            "put": _op("Update repair or transition status", perm=PERM_MANAGE, body="RepairUpdate", ok_schema="Mutation",
                       errors=("400", "404", "409", "500")),
            "delete": _op("Delete repair", perm=PERM_ADMIN, ok_schema="Mutation", params=[_q("id", "integer", True)]),
        },
        "/repairs/{id}": {
            "get": _op("Repair detail", perm=PERM_READ, ok_schema="Repair", headers=_caching_headers(),
                       params=[_path_id(), _q("include")]),
        },
        "/repairs/track/{repair_id}": {
            "get": _op("Customer tracking view", headers=_caching_headers(),
                       params=[{"name": "repair_id", "in": "path", "required": True, "schema": {"type": "string"}}]),
        },
        "/repairs/verify": {"post": _op("Find latest repair id by phone", body="PhoneLookup")},
        "/notification-preferences": {
            "get": _op("Read notification preference", params=[_q("repairId", required=True)]),
            "put": _op("Update notification preference", body="NotificationPreferences", ok_schema="Mutation"),
        },
        "/estimate-approval": {
            "post": _op("Approve or decline an estimate", body="EstimateDecision", ok_schema="Mutation", errors=("400", "404", "409")),
        },
        "/dashboard-stats": {
            "get": _op("Dashboard aggregate", perm=PERM_READ, ok_schema="DashboardStats", headers=_rate_limit_headers(), errors=("429",)),
        },
        "/customers": {
            "get": _op("List customers", perm=PERM_READ, headers=_caching_headers(),
                       params=[_q("limit", "integer"), _q("offset", "integer"), _q("sort"), _q("phone"), _q("q")], errors=("400",)),
            "post": _op("Create customer", perm=PERM_MANAGE, body="CustomerInput", ok="201", ok_schema="Mutation", errors=("400", "500")),
        },
        "/customers/{id}": {
            "get": _op("Customer detail with repairs, newest first", perm=PERM_READ, ok_schema="Customer",
                       headers=_caching_headers(), params=[_path_id()]),
            "put": _op("Update customer", perm=PERM_MANAGE, body="CustomerInput", ok_schema="Mutation", params=[_path_id()],
                       errors=("400", "404", "500")),
            "delete": _op("Delete customer, detaching its repairs", perm=PERM_MANAGE, ok_schema="Mutation", params=[_path_id()]),
        },
        "/cache-invalidate": {
            "post": _op("Invalidate cached repair views", perm=PERM_MANAGE, ok_schema="Mutation",
                        params=[_q("repair_id"), _q("id", "integer")], errors=("400",)),
        },
        "/health-check": {"get": _op("Liveness", errors=("503",))},
    }
    for path, ops in paths.items():
        tag = path.split("/")[1].replace("-", " ").capitalize()
        for method, od in ops.items():
            rid = path.strip("/").replace("/", "_").replace("{", "").replace("}", "").replace("-", "_")
            od["operationId"] = f"{method}_{rid}"
            od["tags"] = [tag]
    tags = sorted({od["tags"][0] for ops in paths.values() for od in ops.values()})
    return {
        "openapi": "3.0.3",
        "info": {"title": "Repair Tracker API", "version": "0.1.0"},
        "paths": paths,
        "components": {
            "schemas": _schemas(),
            "securitySchemes": {"BearerAuth": {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"}},
        },
        "security": [{"BearerAuth": []}],
        "tags": [{"name": t, "description": f"{t} endpoints"} for t in tags],
    }
