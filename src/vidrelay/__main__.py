from vidrelay.interfaces.cli.cli import start

raise SystemExit(start())
