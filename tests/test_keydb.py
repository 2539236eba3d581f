import json
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

import support  # noqa: F401

from decryptstation.storage.keydb import TitleDatabase
from decryptstation.utils.dataModels import TitleRecord
from decryptstation.utils.errors import DatabaseError

SHA = "A94A8FE5CCB19BA61C4C0873D391E987982FBBD3"


class TitleDatabaseTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = TemporaryDirectory()
        self.tmp_path = Path(self.tmpdir.name)
        self.db_path = self.tmp_path / "game_keys.json"

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def _write(self, obj) -> None:
        self.db_path.write_text(json.dumps(obj), encoding="utf-8")

    def test_load_and_lookup_case_insensitive(self) -> None:
        self._write([
            {"game_name": "Demo Disc", "sha1": SHA, "hex_key": "00" * 16},
            {"GameName": "No hash", "sha1": "", "hex_key": "11" * 16},
        ])
        db = TitleDatabase.load(self.db_path)
        self.assertEqual(len(db), 1)
        record = db.lookup(SHA.lower())
        self.assertEqual(record, TitleRecord("Demo Disc", SHA, "00" * 16))
        self.assertIs(db.lookup(SHA), record)
        self.assertIsNone(db.lookup("0" * 40))

    def test_field_names_case_insensitive(self) -> None:
        self._write([{"Game_Name": "X", "SHA1": SHA, "Hex_Key": "22" * 16}])
        record = TitleDatabase.load(self.db_path).lookup(SHA)
        self.assertEqual(record, TitleRecord("X", SHA, "22" * 16))

    def test_missing_file(self) -> None:
        with self.assertRaises(DatabaseError):
            TitleDatabase.load(self.tmp_path / "nope.json")

    def test_not_an_array(self) -> None:
        self._write({"game_name": "X"})
        with self.assertRaises(DatabaseError):
            TitleDatabase.load(self.db_path)

    def test_invalid_json(self) -> None:
        self.db_path.write_text("[{", encoding="utf-8")
        with self.assertRaises(DatabaseError):
            TitleDatabase.load(self.db_path)


if __name__ == "__main__":
    unittest.main()
