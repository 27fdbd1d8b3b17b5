from llamactl.interface_adapters.cli import cli
from llamactl.shared.logger import Logger

if __name__ == "__main__":
    logger = Logger.get(__name__)
    logger.debug("Starting llamactl")
    cli()
