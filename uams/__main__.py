"""Allow ``python -m uams``."""
from uams.cli.main import main

main()
