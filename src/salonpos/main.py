from __future__ import annotations

import json
import logging

from salonpos.application.container import build_container
from salonpos.config import PosSettings, get_app_paths
from salonpos.logging_config import setup_logging

log = logging.getLogger(__name__)


def main() -> None:
    paths = get_app_paths()
    setup_logging(paths.logs_dir, level=logging.INFO)

    container = build_container(paths.db_path, PosSettings.from_env())
    report = container.operations.run_health_check()
    low = container.stock.low_stock()

    log.info("startup db=%s healthy=%s low_stock=%s", paths.db_path, report.healthy, len(low))
    print(json.dumps(
        {
            "db_path": str(paths.db_path),
            "sqlite_integrity": report.sqlite_integrity,
            "items_checked": report.items_checked,
            "projection_drift": [d.item_id for d in report.drift],
            "low_stock": [
                {"item": v.item.name, "available": v.inventory.available_stock, "min": v.item.min_stock}
                for v in low
            ],
        },
        ensure_ascii=False,
        indent=2,
    ))


if __name__ == "__main__":
    main()
