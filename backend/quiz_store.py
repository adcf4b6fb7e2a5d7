"""Quiz and results files on disk, plus the folder tree and password metadata."""

from __future__ import annotations

import json
import re
import secrets
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from passlib.context import CryptContext

import question_types
from errors import AuthError, Conflict, NotFound, QuizixError, RateLimited, ValidationFailed
from logger import get_logger, log_game_event
from models import Quiz, load_quiz_document
from settings import MAX_UNLOCK_ATTEMPTS, MIN_PASSWORD_LENGTH, TOKEN_EXPIRY, UNLOCK_WINDOW

logger = get_logger("Quizix.store")

pwd_context = CryptContext(schemes=["pbkdf2_sha512"], deprecated="auto")

MAX_TITLE_LENGTH = 200
MAX_QUESTIONS = 100
MAX_QUESTION_LENGTH = 5000
MAX_EXPLANATION_LENGTH = 2000
MAX_OPTION_LENGTH = 1000
MAX_FOLDER_NAME_LENGTH = 100
METADATA_VERSION = "1.0"
ITEM_TYPES = ("folder", "quiz")

SAFE_FILENAME = re.compile(r"^[A-Za-z0-9._-]+\.json$")
RESULTS_FILENAME = re.compile(r"^results_\d+_\d+\.json$")
INVALID_FOLDER_CHARS = re.compile(r'[<>:"/\\|?*]')


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def validate_filename(filename: str) -> str:
    if not filename or ".." in filename or not SAFE_FILENAME.match(filename):
        raise QuizixError("Invalid filename", code="INVALID_FILENAME")
    return filename


class QuizStore:
    """JSON files under `quizzes/` and `results/`."""

    def __init__(self, quizzes_dir: Path, results_dir: Path):
        self.quizzes_dir = Path(quizzes_dir)
        self.results_dir = Path(results_dir)
        self.quizzes_dir.mkdir(parents=True, exist_ok=True)
        self.results_dir.mkdir(parents=True, exist_ok=True)

    # --- quizzes ---

    @staticmethod
    def check_limits(quiz: Quiz) -> None:
        errors = []
        if not quiz.title.strip():
            errors.append("Quiz title is required")
        if len(quiz.title) > MAX_TITLE_LENGTH:
            errors.append(f"Quiz title must be less than {MAX_TITLE_LENGTH} characters")
        if len(quiz.questions) > MAX_QUESTIONS:
            errors.append(f"Maximum {MAX_QUESTIONS} questions allowed per quiz")
        for i, q in enumerate(quiz.questions, start=1):
            if len(q.question) > MAX_QUESTION_LENGTH:
                errors.append(f"Question {i} text exceeds {MAX_QUESTION_LENGTH} characters")
            if q.explanation and len(q.explanation) > MAX_EXPLANATION_LENGTH:
                errors.append(f"Question {i} explanation exceeds {MAX_EXPLANATION_LENGTH} characters")
            for j, option in enumerate(q.options, start=1):
                if len(option) > MAX_OPTION_LENGTH:
                    errors.append(f"Question {i}, option {j} exceeds {MAX_OPTION_LENGTH} characters")
        errors.extend(question_types.validate_questions(quiz.questions))
        if errors:
            raise ValidationFailed(errors, "Invalid quiz data")

    def _quiz_path(self, filename: str) -> Path:
        return self.quizzes_dir / validate_filename(filename)

    def save_quiz(self, quiz: Quiz) -> dict[str, Any]:
        self.check_limits(quiz)
        safe_title = re.sub(r"[^a-z0-9\-_]", "_", quiz.title.lower())[:50]
        filename = f"{safe_title}_{int(time.time() * 1000)}.json"
        document = {**quiz.to_document(), "created": _now_iso(), "id": str(uuid.uuid4())}
        self._quiz_path(filename).write_text(json.dumps(document, indent=2), encoding="utf-8")
        logger.info(f"💾 Quiz saved: {filename} ({len(quiz.questions)} questions)")
        return {"success": True, "filename": filename, "id": document["id"]}

    def update_quiz(self, filename: str, quiz: Quiz) -> dict[str, Any]:
        """Rewrite an existing quiz file, keeping its `created` and `id`."""
        previous = self.load_document(filename)
        self.check_limits(quiz)
        document = {**quiz.to_document(), "created": previous.get("created"),
                    "id": previous.get("id"), "updated": _now_iso()}
        self._quiz_path(filename).write_text(json.dumps(document, indent=2), encoding="utf-8")
        logger.info(f"💾 Quiz updated: {filename} ({len(quiz.questions)} questions)")
        return {"success": True, "filename": filename, "id": document["id"]}

    def load_document(self, filename: str) -> dict[str, Any]:
        path = self._quiz_path(filename)
        if not path.exists():
            raise NotFound("Quiz not found", code="QUIZ_NOT_FOUND")
        return json.loads(path.read_text(encoding="utf-8"))

    def load_quiz(self, filename: str) -> Quiz:
        return load_quiz_document(self.load_document(filename))

    def list_quizzes(self) -> list[dict[str, Any]]:
        quizzes = []
        for path in sorted(self.quizzes_dir.glob("*.json")):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (json.JSONDecodeError, OSError) as e:
                logger.error(f"❌ Error reading quiz file {path.name}: {e}")
                continue
            quizzes.append({
                "filename": path.name,
                "title": data.get("title"),
                "questionCount": len(data.get("questions") or []),
                "created": data.get("created"),
                "id": data.get("id"),
            })
        return quizzes

    def delete_quiz(self, filename: str) -> dict[str, Any]:
        path = self._quiz_path(filename)
        if not path.exists():
            raise NotFound("Quiz not found", code="QUIZ_NOT_FOUND")
        path.unlink()
        logger.info(f"🗑️ Quiz deleted: {filename}")
        return {"success": True, "filename": filename}

    # --- results ---

    def _results_path(self, filename: str) -> Path:
        if not RESULTS_FILENAME.match(filename or ""):
            raise QuizixError("Invalid filename format", code="INVALID_FILENAME")
        return self.results_dir / filename

    def save_results(self, quiz_title: str, game_pin: str, results: list[Any], *,
                     start_time: Any = None, end_time: Any = None,
                     questions: Optional[list[Any]] = None,
                     extra: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        if not quiz_title or not game_pin or results is None:
            raise ValidationFailed(["quizTitle, gamePin and results are required"],
                                   "Invalid results data")
        if not str(game_pin).isdigit():
            raise ValidationFailed(["gamePin must be numeric"], "Invalid results data")
        filename = f"results_{game_pin}_{int(time.time() * 1000)}.json"
        data: dict[str, Any] = {
            "quizTitle": quiz_title,
            "gamePin": str(game_pin),
            "results": results,
            "startTime": start_time,
            "endTime": end_time,
            "saved": _now_iso(),
            **(extra or {}),
        }
        if questions:
            data["questions"] = questions
        self._results_path(filename).write_text(json.dumps(data, indent=2, default=str),
                                                encoding="utf-8")
        logger.info(f"💾 Results saved: {filename}")
        return {"success": True, "filename": filename}

    def list_results(self) -> list[dict[str, Any]]:
        entries = []
        for path in self.results_dir.glob("results_*.json"):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (json.JSONDecodeError, OSError) as e:
                logger.error(f"❌ Error reading result file {path.name}: {e}")
                continue
            entries.append({
                "filename": path.name,
                "quizTitle": data.get("quizTitle") or "Untitled Quiz",
                "gamePin": data.get("gamePin"),
                "participantCount": len(data.get("results") or []),
                "startTime": data.get("startTime"),
                "endTime": data.get("endTime"),
                "saved": data.get("saved"),
                "fileSize": path.stat().st_size,
            })
        entries.sort(key=lambda e: e["saved"] or "", reverse=True)
        return entries

    def load_results(self, filename: str) -> dict[str, Any]:
        path = self._results_path(filename)
        if not path.exists():
            raise NotFound("Results not found", code="RESULTS_NOT_FOUND")
        return json.loads(path.read_text(encoding="utf-8"))

    def delete_results(self, filename: str) -> dict[str, Any]:
        path = self._results_path(filename)
        if not path.exists():
            raise NotFound("Results not found", code="RESULTS_NOT_FOUND")
        path.unlink()
        logger.info(f"🗑️ Results deleted: {filename}")
        return {"success": True, "filename": filename}


class RateLimiter:
    """Fixed-window request counter per client key."""

    def __init__(self, max_requests: int, window_seconds: float, *,
                 clock: Callable[[], float] = time.monotonic,
                 message: str = "Too many requests. Please try again later."):
        self.max_requests = max_requests
        self.window = window_seconds
        self.clock = clock
        self.message = message
        self._windows: dict[str, tuple[int, float]] = {}

    def retry_after(self, key: str) -> int:
        """Seconds until `key` may try again; 0 when it is not limited."""
        entry = self._windows.get(key)
        if entry is None:
            return 0
        count, reset_at = entry
        now = self.clock()
        if now >= reset_at:
            del self._windows[key]
            return 0
        return max(1, int(reset_at - now + 0.999)) if count >= self.max_requests else 0

    def check(self, key: str) -> None:
        wait = self.retry_after(key)
        if wait:
            logger.warning(f"⚠️ Rate limit exceeded for {key}")
            raise RateLimited(self.message, retry_after=wait)

    def hit(self, key: str) -> int:
        """Count one request; returns how many remain in the window."""
        self.check(key)
        now = self.clock()
        count, reset_at = self._windows.get(key, (0, now + self.window))
        self._windows[key] = (count + 1, reset_at)
        return self.max_requests - count - 1

    def cleanup(self) -> None:
        now = self.clock()
        for key in [k for k, (_, reset_at) in self._windows.items() if now >= reset_at]:
            del self._windows[key]


class UnlockRateLimiter(RateLimiter):
    def __init__(self, *, clock: Callable[[], float] = time.monotonic):
        super().__init__(MAX_UNLOCK_ATTEMPTS, UNLOCK_WINDOW, clock=clock,
                         message="Too many unlock attempts. Please try again later.")


class MetadataService:
    """Folder tree, quiz display names, password hashes and unlock tokens.

    Persisted as one JSON document `{version, folders, quizzes}`; folders
    are keyed by uuid, quizzes by filename. Tokens live in memory only.
    """

    def __init__(self, path: Path, *, clock: Callable[[], float] = time.time,
                 limiter: Optional[RateLimiter] = None, token_expiry: int = TOKEN_EXPIRY):
        self.path = Path(path)
        self.clock = clock
        self.limiter = limiter or UnlockRateLimiter()
        self.token_expiry = token_expiry
        self.tokens: dict[str, dict[str, Any]] = {}
        self.created_fresh = not self.path.exists()
        self.data = self._load()

    def _load(self) -> dict[str, Any]:
        if self.path.exists():
            data = json.loads(self.path.read_text(encoding="utf-8"))
            logger.info(f"📂 Loaded quiz metadata: {len(data.get('folders', {}))} folders, "
                        f"{len(data.get('quizzes', {}))} quizzes")
            data.setdefault("folders", {})
            data.setdefault("quizzes", {})
            return data
        data = {"version": METADATA_VERSION, "folders": {}, "quizzes": {}}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        logger.info("📂 Created new quiz metadata file")
        return data

    def save(self) -> None:
        self.path.write_text(json.dumps(self.data, indent=2), encoding="utf-8")

    @property
    def folders(self) -> dict[str, dict[str, Any]]:
        return self.data["folders"]

    @property
    def quizzes(self) -> dict[str, dict[str, Any]]:
        return self.data["quizzes"]

    # --- folders ---

    def _folder(self, folder_id: str) -> dict[str, Any]:
        folder = self.folders.get(folder_id)
        if folder is None:
            raise NotFound("Folder not found", code="FOLDER_NOT_FOUND")
        return folder

    @staticmethod
    def _validate_folder_name(name: Any) -> str:
        if not isinstance(name, str) or not name.strip():
            raise ValidationFailed(["Folder name is required"], "Invalid folder name")
        name = name.strip()
        if len(name) > MAX_FOLDER_NAME_LENGTH:
            raise ValidationFailed([f"Folder name must be less than {MAX_FOLDER_NAME_LENGTH} "
                                    f"characters"], "Invalid folder name")
        if INVALID_FOLDER_CHARS.search(name):
            raise ValidationFailed(["Folder name contains invalid characters"],
                                   "Invalid folder name")
        return name

    def _children(self, parent_id: Optional[str], exclude: Optional[str] = None) -> list[dict]:
        return [f for f in self.folders.values()
                if f["parentId"] == parent_id and f["id"] != exclude]

    def _check_sibling_name(self, name: str, parent_id: Optional[str],
                            exclude: Optional[str] = None) -> None:
        if any(f["name"].lower() == name.lower() for f in self._children(parent_id, exclude)):
            raise Conflict("A folder with this name already exists", code="FOLDER_NAME_EXISTS")

    def create_folder(self, name: str, parent_id: Optional[str] = None) -> dict[str, Any]:
        name = self._validate_folder_name(name)
        if parent_id is not None:
            self._folder(parent_id)
        self._check_sibling_name(name, parent_id)
        folder = {
            "id": str(uuid.uuid4()),
            "name": name,
            "parentId": parent_id,
            "passwordHash": None,
            "created": _now_iso(),
            "sortOrder": len(self._children(parent_id)),
        }
        self.folders[folder["id"]] = folder
        self.save()
        log_game_event("folder_created", data={"id": folder["id"], "name": name})
        return folder

    def rename_folder(self, folder_id: str, name: str) -> dict[str, Any]:
        name = self._validate_folder_name(name)
        folder = self._folder(folder_id)
        self._check_sibling_name(name, folder["parentId"], exclude=folder_id)
        folder["name"] = name
        self.save()
        return folder

    def is_descendant(self, folder_id: str, ancestor_id: str) -> bool:
        current = self.folders.get(folder_id)
        seen: set[str] = set()
        while current is not None and current["id"] not in seen:
            seen.add(current["id"])
            if current["parentId"] == ancestor_id:
                return True
            current = self.folders.get(current["parentId"]) if current["parentId"] else None
        return False

    def move_folder(self, folder_id: str, new_parent_id: Optional[str]) -> dict[str, Any]:
        folder = self._folder(folder_id)
        if new_parent_id is not None:
            if new_parent_id not in self.folders:
                raise NotFound("Target folder not found", code="TARGET_FOLDER_NOT_FOUND")
            if new_parent_id == folder_id:
                raise QuizixError("Cannot move folder into itself", code="FOLDER_MOVE_SELF")
            if self.is_descendant(new_parent_id, folder_id):
                raise QuizixError("Cannot move folder into its own descendant",
                                  code="FOLDER_MOVE_DESCENDANT")
        self._check_sibling_name(folder["name"], new_parent_id, exclude=folder_id)
        folder["parentId"] = new_parent_id
        folder["sortOrder"] = len(self._children(new_parent_id, exclude=folder_id))
        self.save()
        return folder

    def delete_folder(self, folder_id: str, delete_contents: bool = False) -> dict[str, Any]:
        self._folder(folder_id)
        child_folders = self._children(folder_id)
        child_quizzes = [name for name, q in self.quizzes.items() if q["folderId"] == folder_id]
        if not delete_contents and (child_folders or child_quizzes):
            raise Conflict("Folder is not empty. Use deleteContents=true to delete all contents.",
                           code="FOLDER_NOT_EMPTY")
        removed_quizzes: list[str] = []
        if delete_contents:
            for child in child_folders:
                removed_quizzes += self.delete_folder(child["id"], True)["deletedQuizzes"]
            for filename in child_quizzes:
                del self.quizzes[filename]
                removed_quizzes.append(filename)
        del self.folders[folder_id]
        self.save()
        log_game_event("folder_deleted", data={"id": folder_id, "quizzes": removed_quizzes})
        return {"success": True, "deletedQuizzes": removed_quizzes}

    # --- quizzes ---

    def register_quiz(self, filename: str, display_name: str) -> dict[str, Any]:
        entry = self.quizzes.get(filename)
        if entry is not None:
            entry["displayName"] = display_name
        else:
            entry = {
                "displayName": display_name,
                "folderId": None,
                "passwordHash": None,
                "created": _now_iso(),
                "sortOrder": len(self.quizzes),
            }
            self.quizzes[filename] = entry
        self.save()
        return entry

    def get_quiz_metadata(self, filename: str) -> Optional[dict[str, Any]]:
        return self.quizzes.get(filename)

    def set_quiz_metadata(self, filename: str, *, display_name: Optional[str] = None,
                          folder_id: Any = ...) -> dict[str, Any]:
        """Update display name and/or folder. Pass folder_id=None to move to the root."""
        entry = self.quizzes.get(filename)
        if entry is None:
            raise NotFound("Quiz not found in metadata", code="QUIZ_NOT_FOUND")
        if display_name is not None:
            if not display_name.strip() or len(display_name) > MAX_TITLE_LENGTH:
                raise ValidationFailed([f"Display name must be 1-{MAX_TITLE_LENGTH} characters"],
                                       "Invalid display name")
            entry["displayName"] = display_name.strip()
        if folder_id is not ...:
            if folder_id is not None:
                self._folder(folder_id)
            entry["folderId"] = folder_id
        self.save()
        return entry

    def delete_quiz_metadata(self, filename: str) -> None:
        if self.quizzes.pop(filename, None) is not None:
            self.save()

    def migrate_existing_quizzes(self, store: QuizStore) -> int:
        """Register quiz files that have no metadata entry yet, at the root."""
        added = 0
        for item in store.list_quizzes():
            filename = item["filename"]
            if filename in self.quizzes:
                continue
            self.quizzes[filename] = {
                "displayName": item.get("title") or filename.removesuffix(".json"),
                "folderId": None,
                "passwordHash": None,
                "created": item.get("created") or _now_iso(),
                "sortOrder": len(self.quizzes),
            }
            added += 1
        if added:
            self.save()
            logger.info(f"📂 Migrated {added} existing quizzes to metadata")
        return added

    def list_tree(self) -> dict[str, Any]:
        def quiz_nodes(folder_id: Optional[str], folder_protected: bool) -> list[dict]:
            entries = sorted(((name, q) for name, q in self.quizzes.items()
                              if q["folderId"] == folder_id),
                             key=lambda item: item[1].get("sortOrder", 0))
            return [{
                "type": "quiz",
                "filename": name,
                "displayName": q["displayName"],
                "protected": bool(q.get("passwordHash")) or folder_protected,
                "created": q.get("created"),
            } for name, q in entries]

        def folder_nodes(parent_id: Optional[str], parent_protected: bool) -> list[dict]:
            nodes = []
            for folder in sorted(self._children(parent_id), key=lambda f: f.get("sortOrder", 0)):
                protected = bool(folder.get("passwordHash"))
                inherited = protected or parent_protected
                nodes.append({
                    "type": "folder",
                    "id": folder["id"],
                    "name": folder["name"],
                    "protected": protected,
                    "created": folder.get("created"),
                    "children": folder_nodes(folder["id"], inherited),
                    "quizzes": quiz_nodes(folder["id"], inherited),
                })
            return nodes

        return {"folders": folder_nodes(None, False), "quizzes": quiz_nodes(None, False)}

    # --- passwords and tokens ---

    def _item(self, item_id: str, item_type: str) -> dict[str, Any]:
        if item_type == "folder":
            return self._folder(item_id)
        if item_type == "quiz":
            entry = self.quizzes.get(item_id)
            if entry is None:
                raise NotFound("Quiz not found", code="QUIZ_NOT_FOUND")
            return entry
        raise QuizixError("Invalid item type", code="INVALID_ITEM_TYPE")

    def set_password(self, item_id: str, item_type: str, password: str, *,
                     current_password: Optional[str] = None) -> dict[str, Any]:
        """Protect an item. Changing an existing password needs the current one."""
        item = self._item(item_id, item_type)
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationFailed([f"Password must be at least {MIN_PASSWORD_LENGTH} characters"],
                                   "Invalid password")
        if item.get("passwordHash"):
            self._require_password(item, current_password)
        item["passwordHash"] = pwd_context.hash(password)
        self.save()
        logger.info(f"🔒 Password set for {item_type} {item_id}")
        return {"success": True, "protected": True}

    def remove_password(self, item_id: str, item_type: str,
                        current_password: Optional[str]) -> dict[str, Any]:
        item = self._item(item_id, item_type)
        if not item.get("passwordHash"):
            return {"success": True, "protected": False}
        self._require_password(item, current_password)
        item["passwordHash"] = None
        self.save()
        self._revoke(item_id, item_type)
        logger.info(f"🔓 Password removed for {item_type} {item_id}")
        return {"success": True, "protected": False}

    @staticmethod
    def _require_password(item: dict[str, Any], password: Optional[str]) -> None:
        if not password:
            raise AuthError("Current password is required", code="PASSWORD_REQUIRED")
        if not pwd_context.verify(password, item["passwordHash"]):
            raise AuthError("Incorrect password", code="INCORRECT_PASSWORD")

    def unlock(self, item_id: str, item_type: str, password: str,
               client: str = "unknown") -> dict[str, Any]:
        self.limiter.check(client)
        item = self._item(item_id, item_type)
        if not item.get("passwordHash"):
            raise QuizixError("Item is not password protected", code="NOT_PROTECTED")
        self.limiter.hit(client)
        if not password or not pwd_context.verify(password, item["passwordHash"]):
            logger.warning(f"⚠️ Failed unlock for {item_type} {item_id} from {client}")
            raise AuthError("Incorrect password", code="INCORRECT_PASSWORD")

        token = secrets.token_hex(32)
        self.tokens[token] = {"itemId": item_id, "itemType": item_type,
                              "expiresAt": self.clock() + self.token_expiry}
        logger.info(f"🔓 Unlocked {item_type} {item_id}")
        return {"token": token, "expiresIn": self.token_expiry * 1000}

    def verify_token(self, token: Optional[str], item_id: str, item_type: str) -> bool:
        session = self.tokens.get(token or "")
        if session is None:
            return False
        if self.clock() > session["expiresAt"]:
            del self.tokens[token]
            return False
        return session["itemId"] == item_id and session["itemType"] == item_type

    def _revoke(self, item_id: str, item_type: str) -> None:
        for token in [t for t, s in self.tokens.items()
                      if s["itemId"] == item_id and s["itemType"] == item_type]:
            del self.tokens[token]

    def cleanup_expired_tokens(self) -> int:
        now = self.clock()
        expired = [t for t, s in self.tokens.items() if now > s["expiresAt"]]
        for token in expired:
            del self.tokens[token]
        return len(expired)

    def _protected_chain(self, item_id: str, item_type: str) -> list[tuple[str, str]]:
        """(id, type) of every protected node guarding the item, nearest first."""
        chain: list[tuple[str, str]] = []
        if item_type == "quiz":
            entry = self.quizzes.get(item_id)
            if entry is None:
                return chain
            if entry.get("passwordHash"):
                chain.append((item_id, "quiz"))
            folder_id = entry.get("folderId")
        elif item_type == "folder":
            folder_id = item_id
        else:
            return chain
        seen: set[str] = set()
        while folder_id and folder_id not in seen:
            seen.add(folder_id)
            folder = self.folders.get(folder_id)
            if folder is None:
                break
            if folder.get("passwordHash"):
                chain.append((folder_id, "folder"))
            # A folder only guards itself through its own password
            if item_type == "folder":
                break
            folder_id = folder.get("parentId")
        return chain

    def requires_auth(self, item_id: str, item_type: str) -> bool:
        return bool(self._protected_chain(item_id, item_type))

    def check_access(self, item_id: str, item_type: str, token: Optional[str]) -> None:
        """Raise AuthError unless the item is open or `token` unlocks one of its guards."""
        chain = self._protected_chain(item_id, item_type)
        if not chain:
            return
        if not token:
            raise AuthError("Authentication required", code="AUTH_REQUIRED")
        if not any(self.verify_token(token, guard_id, guard_type)
                   for guard_id, guard_type in chain):
            raise AuthError("Invalid or expired authentication token", status_code=403,
                            code="INVALID_TOKEN")
