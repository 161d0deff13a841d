"""
Process entry point: ``python main.py`` or ``uvicorn main:app``.
"""

from datalayer_agent.main import app, main

__all__ = ["app", "main"]

if __name__ == "__main__":
    main()
