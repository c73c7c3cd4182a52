import os
import importlib

from pglockwatch.app import mcp
from pglockwatch.core.logger import get_logger

logger = get_logger("pglockwatch")

MODULE_PACKAGES = ("tools", "resources", "prompts")

# Dynamic loading: importing a module registers its tools/resources/prompts on mcp
def load_modules():
    base_path = os.path.dirname(__file__)
    for package in MODULE_PACKAGES:
        package_path = os.path.join(base_path, package)
        if not os.path.exists(package_path):
            logger.warning(f"Directory not found: {package_path}")
            continue

        for file in sorted(os.listdir(package_path)):
            if file.endswith(".py") and not file.startswith("__"):
                name = file[:-3]
                importlib.import_module(f"pglockwatch.{package}.{name}")
                logger.info(f"Loaded {package[:-1]}: {name}")

def main():
    load_modules()
    mcp.run()

if __name__ == "__main__":
    main()
