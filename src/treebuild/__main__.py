"""Allow running treebuild as a module: python -m treebuild."""

from treebuild.cli import main

if __name__ == "__main__":
    main()
