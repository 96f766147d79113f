"""CLI script to import a CSV/JSON timetable export for one user.
Usage: python scripts/import_courses.py USERNAME FILE [--replace-all]
"""
import sys
import argparse
import pathlib
# Ensure `backend/` is on sys.path so `studytogether` imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from studytogether.database import engine, create_db_and_tables
from studytogether import repositories, services


def main(username: str, path: pathlib.Path, replace_all: bool = False) -> int:
    """Import `path` as courses owned by `username`.

    Per-row failures are printed and do not stop the import. Returns a
    process exit code.
    """
    if not path.exists():
        print(f'File not found: {path}')
        return 1
    create_db_and_tables()
    with Session(engine) as session:
        user = repositories.UserRepository(session).get_by_username(username)
        if not user:
            print(f'Unknown user: {username}')
            return 1
        svc = services.CourseService(session)
        try:
            result = svc.import_file(user.id, path.read_bytes(), path.name, replace_all=replace_all)
        except ValueError as e:
            print(f'Error importing {path}: {e}')
            return 1
    for err in result['errors']:
        print(f"row {err['row']}: {err['error']}")
    print(f"Imported {result['success']} courses, {result['failed']} failed")
    return 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('username', help='Owner of the imported courses')
    parser.add_argument('file', type=pathlib.Path, help='CSV or JSON timetable export')
    parser.add_argument('--replace-all', action='store_true', help="Delete the user's existing courses first")
    args = parser.parse_args()
    sys.exit(main(args.username, args.file, replace_all=args.replace_all))
