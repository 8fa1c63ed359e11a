"""
Collation dependency scanner - web application

JSON endpoints over the resolvers; each request gets its own catalog
accessor from ``catalog_factory``.
"""
import logging
from typing import Any, Callable, Dict, Optional

from flask import Flask, jsonify, request

from src.config import default_config
from src.core.exceptions import CollationDependencyError
from src.db.catalog import CatalogAccessor
from src.db.models import ObjectType
from src.graph.builder import DependencyGraphBuilder
from src.resolver.dependencies import CollationDependencyResolver
from src.scanner.collector import DependencyCollector

logger = logging.getLogger(__name__)

OBJECT_KINDS = {
    'constraint': ObjectType.CONSTRAINT,
    'index': ObjectType.INDEX,
    'matview': ObjectType.MATERIALIZED_VIEW,
}

ERROR_STATUS = {
    'NOT_FOUND': 404,
    'UNSUPPORTED_CONSTRUCT': 422,
}


def create_app(catalog_factory: Callable[[], CatalogAccessor],
               config: Optional[Dict[str, Dict[str, Any]]] = None) -> Flask:
    """Build the flask application.

    Args:
        catalog_factory: returns a catalog accessor for one request
        config: loaded configuration, defaults when omitted
    """
    config = config or default_config()
    app = Flask(__name__)

    def make_resolver(catalog: CatalogAccessor) -> CollationDependencyResolver:
        return CollationDependencyResolver(catalog, max_depth=config['resolver']['max_depth'])

    @app.errorhandler(CollationDependencyError)
    def handle_error(error: CollationDependencyError):
        status = ERROR_STATUS.get(error.code, 500)
        logger.warning("Request failed with %s", error)
        return jsonify(error.to_dict()), status

    @app.route('/collations/<kind>/<int:oid>')
    def get_collations(kind: str, oid: int):
        """Collation dependencies of one object"""
        if kind not in OBJECT_KINDS:
            return jsonify({'error': f'unknown object kind {kind}', 'code': 'BAD_REQUEST'}), 400

        catalog = catalog_factory()
        resolver = make_resolver(catalog)
        rows = resolver.rows(OBJECT_KINDS[kind], oid)
        payload = {
            'object': {'kind': kind, 'oid': oid},
            'rows': [{'collation': collation} for (collation,) in rows],
        }
        if request.args.get('describe'):
            payload['collations'] = [
                {
                    'oid': coll.oid,
                    'name': coll.name,
                    'schema': coll.schema,
                    'provider': coll.provider,
                    'recorded_version': coll.recorded_version,
                    'actual_version': coll.actual_version,
                    'version_mismatch': coll.version_mismatch,
                }
                for coll in catalog.describe_collations(collation for (collation,) in rows)
            ]
        return jsonify(payload)

    @app.route('/graph')
    def get_graph():
        """Граф зависимостей всей базы"""
        catalog = catalog_factory()
        collector = DependencyCollector(make_resolver(catalog), catalog,
                                        strict=config['scan']['strict'],
                                        excluded_schemas=config['scan']['excluded_schemas'])
        results = collector.collect()
        used = {oid for result in results for oid in result.collations}

        builder = DependencyGraphBuilder()
        builder.build_graph(results, catalog.describe_collations(used))
        return jsonify(builder.to_json())

    return app


if __name__ == '__main__':
    from src.db.catalog import PgCatalog
    from src.db.connection import DatabaseConnection

    connection = DatabaseConnection()
    create_app(lambda: PgCatalog(connection.connect())).run(debug=True)
