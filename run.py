#!/usr/bin/env python3
"""
Student Loans Service Entry Point

Starts the FastAPI server using the STUDENT_LOANS_* environment configuration.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from student_loans.api import run_server
from student_loans.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Student Loans service...")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Student Loans service...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
