"""
Run the form sync API with uvicorn.

Usage:
    python run.py
    python run.py --reload          # Development mode with auto-reload
    python run.py --port 8080       # Custom port
    python run.py --no-scheduler    # Serve requests without the renewal sweep
"""
import argparse
import os
import uvicorn


def main():
    parser = argparse.ArgumentParser(description="Run the form sync API server")
    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to (default: 8000)"
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development"
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Number of worker processes (default: 1, ignored if --reload is set)"
    )
    parser.add_argument(
        "--no-scheduler",
        action="store_true",
        help="Do not run the daily webhook renewal sweep in this process"
    )

    args = parser.parse_args()
    workers = 1 if args.reload else args.workers

    if args.no_scheduler:
        os.environ["SCHEDULER_ENABLED"] = "false"

    print("Starting form sync API server...")
    print(f"  Host: {args.host}")
    print(f"  Port: {args.port}")
    print(f"  Reload: {args.reload}")
    print(f"  Scheduler: {'off' if args.no_scheduler else 'on'}")
    if workers > 1:
        print(f"  Workers: {workers}")
        if not args.no_scheduler:
            print("  Warning: every worker runs its own renewal sweep; run one with the scheduler and the rest with --no-scheduler")
    print()

    uvicorn.run(
        "formsync.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=workers
    )


if __name__ == "__main__":
    main()
