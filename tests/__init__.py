import os
import tempfile

# Base SQLite aislada; debe fijarse antes de importar backend.app.core.db
_TMP_DIR = tempfile.mkdtemp(prefix="tarifas-tests-")
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(_TMP_DIR, "test.sqlite3")
