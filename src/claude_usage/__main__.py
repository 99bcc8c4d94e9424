"""Enable running claude-usage as a module: python -m claude_usage."""

from claude_usage.cli import main

if __name__ == "__main__":
    main()
