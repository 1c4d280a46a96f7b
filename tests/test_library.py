import json
import pathlib
import tempfile
import unittest
from unittest.mock import MagicMock, mock_open, patch

from storyteller.library import (find_book_by_id, get_book_dir, list_books, load_book,
                                 load_settings, parse_book_dir, save_book, save_progress,
                                 save_settings)
from storyteller.models import Book, Chapter, PlaybackSettings


def make_book() -> Book:
    return Book(
        id="abc123",
        title="River Tales",
        author="Jane Doe",
        source_type="text",
        chapters=[
            Chapter("Chapter 1", "Chapter 1\n\nThe river ran slow.", 1),
            Chapter("Chapter 2", "Chapter 2\n\nThe mill was quiet.", 2),
        ],
        progress={1: 0.5},
    )


class TestSaveBook(unittest.TestCase):

    @patch('storyteller.library.pathlib.Path.mkdir')
    @patch('storyteller.library.open', new_callable=mock_open)
    @patch('storyteller.library.json.dump')
    def test_save_book_writes_json_and_markdown(self, mock_json_dump, mock_file, mock_mkdir):
        book_dir = save_book(make_book(), pathlib.Path("library"))

        self.assertEqual(book_dir, pathlib.Path("library") / "Jane Doe" / "River Tales [abc123]")

        args, _ = mock_json_dump.call_args
        record = args[0]
        self.assertEqual(record["id"], "abc123")
        self.assertEqual(len(record["chapters"]), 2)
        self.assertEqual(record["chapters"][0]["progress"], 0.5)
        self.assertEqual(record["chapters"][1]["progress"], 0.0)

        handle = mock_file()
        written_content = "".join(call.args[0] for call in handle.write.call_args_list)
        self.assertIn("| 1 | Chapter 1 | 30 | 50% |", written_content)
        self.assertIn("| 2 | Chapter 2 | 30 | 0% |", written_content)
        self.assertIn("**Book ID:** abc123", written_content)

    def test_round_trip_and_progress(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = pathlib.Path(tmp)
            book_dir = save_book(make_book(), root)

            loaded = load_book(book_dir)
            self.assertEqual(loaded.title, "River Tales")
            self.assertEqual(loaded.chapters, make_book().chapters)
            self.assertEqual(loaded.progress, {1: 0.5, 2: 0.0})

            save_progress(book_dir, 2, 0.25)
            save_progress(book_dir, 1, 1.7)
            save_progress(book_dir, 9, 0.5)  # Unknown chapter, ignored

            loaded = load_book(book_dir)
            self.assertEqual(loaded.progress, {1: 1.0, 2: 0.25})
            self.assertIn("25%", (book_dir / "chapters.md").read_text(encoding="utf-8"))


class TestFindBook(unittest.TestCase):

    def test_find_book_by_id(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = pathlib.Path(tmp)
            book_dir = save_book(make_book(), root)
            (root / ".hidden").mkdir()
            (root / "Jane Doe" / "Not a book [zzz]").mkdir()

            self.assertEqual(find_book_by_id("abc123", root), book_dir)
            self.assertIsNone(find_book_by_id("zzz", root))
            self.assertIsNone(find_book_by_id("missing", root))
            self.assertEqual(list_books(root), [book_dir])

    def test_missing_root(self):
        self.assertEqual(list_books(pathlib.Path("/nonexistent/library/root")), [])
        self.assertIsNone(find_book_by_id("abc", pathlib.Path("/nonexistent/library/root")))

    @patch('storyteller.library.list_books')
    def test_multiple_matches_use_first(self, mock_list_books):
        first = MagicMock()
        first.name = "A [dup]"
        second = MagicMock()
        second.name = "B [dup]"
        mock_list_books.return_value = [first, second]

        self.assertEqual(find_book_by_id("dup"), first)

    def test_parse_book_dir_standard(self):
        path = get_book_dir("Author Name", "Book Title", "ID123", pathlib.Path("library"))
        author, title, book_id = parse_book_dir(path)

        self.assertEqual(author, "Author Name")
        self.assertEqual(title, "Book Title")
        self.assertEqual(book_id, "ID123")

    def test_parse_book_dir_brackets_in_title(self):
        path = pathlib.Path("library/Author/Book [Part 1] [ID123]")
        author, title, book_id = parse_book_dir(path)

        self.assertEqual(title, "Book [Part 1]")
        self.assertEqual(book_id, "ID123")

    def test_parse_book_dir_no_id(self):
        path = pathlib.Path("library/Author/Book Title")
        author, title, book_id = parse_book_dir(path)

        self.assertEqual(title, "Book Title")
        self.assertEqual(book_id, "Unknown")


class TestSettings(unittest.TestCase):

    def test_defaults_when_missing(self):
        with tempfile.TemporaryDirectory() as tmp:
            self.assertEqual(load_settings(pathlib.Path(tmp)), PlaybackSettings())

    def test_round_trip(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = pathlib.Path(tmp)
            save_settings(PlaybackSettings(voice_id="en-us", rate=0.4, pitch=1.2), root)

            settings = load_settings(root)
            self.assertEqual(settings.voice_id, "en-us")
            self.assertEqual(settings.rate, 0.4)
            self.assertEqual(settings.pitch, 1.2)

    def test_corrupt_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = pathlib.Path(tmp)
            (root / "settings.json").write_text("{not json", encoding="utf-8")
            self.assertEqual(load_settings(root), PlaybackSettings())

    def test_partial_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = pathlib.Path(tmp)
            (root / "settings.json").write_text(json.dumps({"rate": 0.3}), encoding="utf-8")
            settings = load_settings(root)
            self.assertEqual(settings.rate, 0.3)
            self.assertEqual(settings.pitch, 1.0)
            self.assertIsNone(settings.voice_id)


if __name__ == "__main__":
    unittest.main()
