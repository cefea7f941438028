"""
CLI entry point, when used as a module: `python -m kexpose`.

Useful for debugging in the IDEs (use the start-mode "Module", module "kexpose").
"""
from kexpose import cli

if __name__ == '__main__':
    cli.main()
