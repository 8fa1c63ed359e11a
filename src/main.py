"""
Главный файл приложения

Collation dependency scanner: which constraints, indexes and materialized
views may silently change behavior when a collation library is upgraded.

Запуск:
    python -m src.main --config db.ini constraint 16423
    python -m src.main --config db.ini index public.users_name_idx
    python -m src.main --config db.ini --format json matview monthly_sales
    python -m src.main --config db.ini scan --collation 100 --graph deps.png
"""
import argparse
import dataclasses
import json
import logging
import sys
from typing import Any, Dict, List, Optional

import psycopg2

from src.config import default_config, load_config
from src.core.exceptions import CollationDependencyError
from src.db.catalog import CatalogAccessor, PgCatalog
from src.db.connection import DatabaseConnection
from src.db.models import ObjectDependencies, ObjectType
from src.graph.builder import DependencyGraphBuilder
from src.resolver.dependencies import CollationDependencyResolver
from src.scanner.collector import DependencyCollector, affected_by

logger = logging.getLogger(__name__)

COMMANDS = {
    'constraint': ObjectType.CONSTRAINT,
    'index': ObjectType.INDEX,
    'matview': ObjectType.MATERIALIZED_VIEW,
}


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Find direct and indirect dependencies on collations"
    )
    parser.add_argument("--config", help="INI-файл с настройками подключения")
    parser.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Формат вывода (по умолчанию: text)",
    )
    parser.add_argument("--describe", action="store_true",
                        help="показать имена и версии правил сортировки")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("constraint", help="зависимости ограничения").add_argument(
        "target", help="OID ограничения")
    sub.add_parser("index", help="зависимости индекса").add_argument(
        "target", help="имя или OID индекса")
    sub.add_parser("matview", help="зависимости материализованного представления").add_argument(
        "target", help="имя или OID представления")

    scan = sub.add_parser("scan", help="обойти всю базу")
    scan.add_argument("--collation", type=int, action="append", default=[],
                      help="оставить только объекты, зависящие от этого OID")
    scan.add_argument("--graph", help="сохранить граф зависимостей в файл")
    scan.add_argument("--strict", action="store_true", help="остановиться на первой ошибке")

    return parser.parse_args(argv)


def configure_logging(config: Dict[str, Any]):
    logging.basicConfig(level=getattr(logging, config['level']), format=config['format'])


def resolve_target(catalog: CatalogAccessor, command: str, target: str) -> int:
    if command == 'constraint':
        if not target.isdigit():
            raise CollationDependencyError(f"constraint must be given by OID, got {target!r}",
                                           "BAD_ARGUMENT")
        return int(target)
    return catalog.resolve_relation(target)


def run_object(args: argparse.Namespace, catalog: CatalogAccessor,
               resolver: CollationDependencyResolver) -> Dict[str, Any]:
    oid = resolve_target(catalog, args.command, args.target)
    collations = resolver.resolve(COMMANDS[args.command], oid)
    report: Dict[str, Any] = {'object': {'kind': args.command, 'oid': oid}, 'collations': collations}
    if args.describe:
        report['described'] = [dataclasses.asdict(coll)
                               for coll in catalog.describe_collations(collations)]
    return report


def run_scan(args: argparse.Namespace, catalog: CatalogAccessor,
             resolver: CollationDependencyResolver, config: Dict[str, Any]) -> Dict[str, Any]:
    collector = DependencyCollector(resolver, catalog,
                                    strict=args.strict or config['scan']['strict'],
                                    excluded_schemas=config['scan']['excluded_schemas'])
    results = collector.collect()
    if args.collation:
        results = affected_by(args.collation, results)

    if args.graph:
        used = {oid for result in results for oid in result.collations}
        builder = DependencyGraphBuilder()
        builder.build_graph(results, catalog.describe_collations(used))
        builder.save(args.graph)
        logger.info("Graph saved to %s", args.graph)

    return {'objects': [_scan_entry(result) for result in results]}


def _scan_entry(result: ObjectDependencies) -> Dict[str, Any]:
    entry = {
        'kind': result.obj.obj_type.value,
        'oid': result.obj.oid,
        'name': result.obj.qualified_name,
        'collations': result.collations,
    }
    if result.failed:
        entry['error'] = result.error
    return entry


def format_text(report: Dict[str, Any]) -> str:
    lines = []
    if 'objects' in report:
        for entry in report['objects']:
            suffix = f"  ERROR: {entry['error']}" if 'error' in entry else ''
            collations = ', '.join(str(oid) for oid in entry['collations']) or '-'
            lines.append(f"{entry['kind']} {entry['name']} ({entry['oid']}): {collations}{suffix}")
        return '\n'.join(lines)

    names = {coll['oid']: coll for coll in report.get('described', [])}
    for oid in report['collations']:
        coll = names.get(oid)
        if coll is None:
            lines.append(str(oid))
            continue
        line = f"{oid}\t{coll['schema']}.{coll['name']}"
        if None not in (coll['recorded_version'], coll['actual_version']) \
                and coll['recorded_version'] != coll['actual_version']:
            line += f"\tversion {coll['recorded_version']} -> {coll['actual_version']}"
        lines.append(line)
    return '\n'.join(lines)


def main(argv: Optional[List[str]] = None, catalog: CatalogAccessor = None) -> int:
    args = parse_args(argv)

    try:
        config = load_config(args.config) if args.config else default_config()
    except CollationDependencyError as e:
        print(f"Ошибка конфигурации: {e}", file=sys.stderr)
        return 1
    configure_logging(config['logging'])

    connection = None
    try:
        if catalog is None:
            connection = DatabaseConnection(config['database'])
            catalog = PgCatalog(connection.connect())

        resolver = CollationDependencyResolver(catalog, max_depth=config['resolver']['max_depth'])
        if args.command == 'scan':
            report = run_scan(args, catalog, resolver, config)
        else:
            report = run_object(args, catalog, resolver)
    except CollationDependencyError as e:
        print(f"Ошибка: {e}", file=sys.stderr)
        return 1
    except psycopg2.Error as e:
        print(f"Ошибка базы данных: {e}", file=sys.stderr)
        return 1
    finally:
        if connection is not None:
            connection.close()

    if args.format == 'json':
        print(json.dumps(report, indent=2, ensure_ascii=False))
    else:
        output = format_text(report)
        if output:
            print(output)
    return 0


if __name__ == '__main__':
    sys.exit(main())
