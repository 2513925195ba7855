from __future__ import annotations

import logging
import sys

from pdv.application.container import build_container, start_session
from pdv.config import get_app_paths, load_service_settings
from pdv.domain.errors import ConfigurationError
from pdv.logging_config import setup_logging


def main() -> int:
    paths = get_app_paths()
    setup_logging(paths.logs_dir, level=logging.INFO)

    try:
        settings = load_service_settings()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    container = build_container(settings, paths.store_path)
    restored = start_session(container)

    cart = container.cart.state
    if restored:
        print(f"Cart restored: {len(cart.items)} line(s), {cart.item_count} item(s), total {cart.total}")
        for item in cart.items:
            print(f"  {item.display_name} x{item.quantity} = {item.subtotal}")
        container.persistence.acknowledge_recovery()
    else:
        print("No cart to restore.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
