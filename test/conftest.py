import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def set_admin_password(repo, password: str = "Admin1234") -> str:
    from shopledger.repositories.sqlite_repo import BOOTSTRAP_ADMIN_ID

    repo.set_user_password(BOOTSTRAP_ADMIN_ID, password, must_change_password=0)
    return password
