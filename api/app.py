# api/app.py
import datetime
import logging
from decimal import Decimal

from flask import Flask, jsonify, abort, request
from pydantic import BaseModel, ValidationError, conint
from typing import Any, Dict, List, Optional
from waitress import serve

from config import settings
from core.errors import (
    ReconciliationError, IncompleteReadingsError, DuplicateReadingError, NegativeVolumeError,
    MissingMeasurementError, DuplicateReconciliationError, InvalidTransitionError, ReconciliationNotFoundError,
)
from core.models import PumpReading, TankReading, ReadingType
from core.reconciliation import (
    ReconciliationController, ReconciliationQuery, ReconciliationQueryService, group_readings,
)
from data import database
from api.auth import require_api_key
from utils.helpers import ensure_utc

logger = logging.getLogger("wetstock_api")

ERROR_STATUS_CODES = {
    IncompleteReadingsError: 422,
    DuplicateReadingError: 422,
    NegativeVolumeError: 422,
    MissingMeasurementError: 422,
    DuplicateReconciliationError: 409,
    InvalidTransitionError: 409,
    ReconciliationNotFoundError: 404,
}


# --- Pydantic Models ---
class PumpReadingPayload(BaseModel):
    shift_id: str
    pump_id: str
    reading_type: ReadingType
    recorded_at: datetime.datetime
    electric_meter: Optional[Decimal] = None
    manual_meter: Optional[Decimal] = None
    reading_id: Optional[str] = None
    recorded_by: Optional[str] = None
    verified_by: Optional[str] = None

    def to_reading(self) -> PumpReading:
        return PumpReading(**{**self.model_dump(), "recorded_at": ensure_utc(self.recorded_at)})


class TankReadingPayload(BaseModel):
    shift_id: str
    tank_id: str
    reading_type: ReadingType
    recorded_at: datetime.datetime
    dip_value: Optional[Decimal] = None
    volume: Optional[Decimal] = None
    temperature: Optional[Decimal] = None
    water_level: Optional[Decimal] = None
    reading_id: Optional[str] = None
    recorded_by: Optional[str] = None
    verified_by: Optional[str] = None

    def to_reading(self) -> TankReading:
        return TankReading(**{**self.model_dump(), "recorded_at": ensure_utc(self.recorded_at)})


class GroupReadingsPayload(BaseModel):
    pump_readings: List[PumpReadingPayload] = []
    tank_readings: List[TankReadingPayload] = []


class CalculatePayload(BaseModel):
    recorded_by: Optional[str] = None


class ResolvePayload(BaseModel):
    note: Optional[str] = None
    resolved_by: Optional[str] = None


class HistoryQueryArgs(ReconciliationQuery):
    limit: Optional[conint(gt=0)] = 100


class ListQueryArgs(ReconciliationQuery):
    limit: conint(ge=1, le=1000) = 100
    page: conint(ge=1, le=1000) = 1


def _json_body() -> Dict[str, Any]:
    if not request.is_json:
        abort(400, description="Request content type must be application/json.")
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        abort(400, description="Request body must be a JSON object.")
    return body


def _parse(model, data: Dict[str, Any]):
    try:
        return model(**data)
    except ValidationError as e:
        abort(400, description=e.errors(include_url=False, include_context=False, include_input=False))


def _default_collaborators():
    data_source = database.SqlShiftDataSource(database.SessionLocal)
    repository = database.SqlReconciliationRepository(database.SessionLocal)
    return ReconciliationController(data_source, repository), ReconciliationQueryService(repository)


def create_app(controller: Optional[ReconciliationController] = None,
               query_service: Optional[ReconciliationQueryService] = None) -> Flask:
    if controller is None:
        controller, default_queries = _default_collaborators()
        query_service = query_service or default_queries
    elif query_service is None:
        query_service = ReconciliationQueryService(controller.repository)

    app = Flask(__name__)
    app.extensions['reconciliation_controller'] = controller
    app.extensions['reconciliation_queries'] = query_service

    # --- Error Handlers ---
    @app.errorhandler(ReconciliationError)
    def reconciliation_error(e: ReconciliationError):
        status = next((code for cls, code in ERROR_STATUS_CODES.items() if isinstance(e, cls)), 422)
        logger.warning(f"{type(e).__name__} ({status}): {e.message}")
        return jsonify(e.to_dict()), status

    @app.errorhandler(400)
    def bad_request(e): return jsonify({"error": "Bad Request", "details": getattr(e, 'description', str(e))}), 400

    @app.errorhandler(401)
    def unauthorized(e): return jsonify(error="Unauthorized"), 401

    @app.errorhandler(404)
    def resource_not_found(e): return jsonify(error=getattr(e, 'description', "Resource not found")), 404

    @app.errorhandler(500)
    def internal_server_error(e):
        logger.error(f"API Internal Server Error: {e}", exc_info=True)
        return jsonify(error="Internal server error occurred."), 500

    # --- API Endpoints ---
    @app.route('/health', methods=['GET'])
    def health_check():
        return jsonify(status="ok")

    @app.route('/api/v1/readings/group', methods=['POST'])
    @require_api_key
    def group_shift_readings():
        payload = _parse(GroupReadingsPayload, _json_body())
        readings = [item.to_reading() for item in payload.pump_readings + payload.tank_readings]
        result = group_readings(readings)
        return jsonify(result.to_dict())

    @app.route('/api/v1/reconciliations/shift/<string:shift_id>', methods=['POST'])
    @require_api_key
    def calculate_shift_reconciliation(shift_id):
        payload = _parse(CalculatePayload, request.get_json(silent=True) or {})
        try:
            record = controller.calculate_reconciliation(shift_id, recorded_by=payload.recorded_by)
        except LookupError as e:
            abort(404, description=str(e))
        return jsonify(record.to_dict()), 201

    @app.route('/api/v1/reconciliations/shift/<string:shift_id>/validate', methods=['GET'])
    @require_api_key
    def validate_shift_readings(shift_id):
        try:
            result = controller.validate(shift_id)
        except LookupError as e:
            abort(404, description=str(e))
        return jsonify(result.to_dict())

    @app.route('/api/v1/reconciliations', methods=['GET'])
    @require_api_key
    def list_reconciliations():
        args = _parse(ListQueryArgs, request.args.to_dict())
        records = query_service.list(ReconciliationQuery(**args.model_dump(exclude={'limit', 'page'})))
        offset = (args.page - 1) * args.limit
        return jsonify({
            "total": len(records),
            "page": args.page,
            "limit": args.limit,
            "reconciliations": [record.to_dict() for record in records[offset:offset + args.limit]],
        })

    @app.route('/api/v1/reconciliations/shift/<string:shift_id>', methods=['GET'])
    @require_api_key
    def get_shift_reconciliation(shift_id):
        record = query_service.by_shift(shift_id)
        if record is None:
            abort(404, description=f"No reconciliation for shift '{shift_id}'.")
        return jsonify(record.to_dict())

    @app.route('/api/v1/reconciliations/stats', methods=['GET'])
    @require_api_key
    def get_reconciliation_stats():
        query = _parse(ReconciliationQuery, request.args.to_dict())
        return jsonify(query_service.statistics(query).to_dict())

    @app.route('/api/v1/reconciliations/tank/<string:tank_id>/history', methods=['GET'])
    @require_api_key
    def get_tank_history(tank_id):
        args = _parse(HistoryQueryArgs, request.args.to_dict())
        query = ReconciliationQuery(**args.model_dump(exclude={'limit'}))
        history = query_service.tank_history(tank_id, query)[:args.limit]
        return jsonify({
            "tank_id": tank_id,
            "summary": query_service.tank_summary(tank_id, query).to_dict(),
            "history": [
                {
                    "reconciliation_id": record.reconciliation_id,
                    "shift_id": record.shift_id,
                    "status": record.status.value,
                    "recorded_at": record.recorded_at.isoformat() if record.recorded_at else None,
                    **tank.to_dict(),
                }
                for record, tank in history
            ],
        })

    @app.route('/api/v1/reconciliations/<string:reconciliation_id>', methods=['GET'])
    @require_api_key
    def get_reconciliation(reconciliation_id):
        return jsonify(query_service.by_id(reconciliation_id).to_dict())

    @app.route('/api/v1/reconciliations/<string:reconciliation_id>/resolve', methods=['PATCH'])
    @require_api_key
    def resolve_reconciliation(reconciliation_id):
        payload = _parse(ResolvePayload, _json_body())
        record = controller.resolve_reconciliation(reconciliation_id, note=payload.note,
                                                   resolved_by=payload.resolved_by)
        return jsonify(record.to_dict())

    return app


app = create_app()

# --- Main Execution Block ---
if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    logger.info(f"Starting API server with Waitress on http://0.0.0.0:{settings.FLASK_PORT}")
    serve(app, host='0.0.0.0', port=settings.FLASK_PORT, threads=8)
