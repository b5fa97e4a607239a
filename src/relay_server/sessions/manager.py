"""SessionManager for CRUD operations on chat sessions.

This module provides the SessionManager class which handles:
- Creating new sessions
- Listing sessions sorted by last update
- Retrieving session details
- Updating session settings
- Deleting sessions
"""

import logging
from pathlib import Path

from relay_server.sessions.session import ChatSession
from relay_server.sessions.types import Message, SessionCreationOptions

logger = logging.getLogger(__name__)

CONTEXT_SUFFIX = ".context"


class SessionManager:
    """Manages chat sessions with CRUD operations.

    The SessionManager operates on a directory of JSON session files
    and provides high-level operations for session management.
    """

    def __init__(self, sessions_dir: Path):
        """Initialize the SessionManager.

        Args:
            sessions_dir: Directory where session JSON files are stored
        """
        self.sessions_dir = sessions_dir
        self.sessions_dir.mkdir(parents=True, exist_ok=True)

    def create_session(self, options: SessionCreationOptions) -> ChatSession:
        """Create a new chat session.

        Args:
            options: Session creation options including model, prompt, flags

        Returns:
            The newly created ChatSession

        Raises:
            ValueError: If the model name is empty
        """
        if not options.model:
            raise ValueError("Model name must not be empty")

        session_id = ChatSession.generate_session_id()
        session = ChatSession(session_id=session_id, model=options.model)
        session.metadata.sandbox_enabled = options.sandbox_enabled
        session.metadata.converse_mode = options.converse_mode
        session.metadata.rate_limiter_enabled = options.rate_limiter_enabled

        if options.system_prompt:
            session.set_system_prompt(options.system_prompt)

        session.save(self.sessions_dir)

        logger.info(f"Created new session {session_id} with model {options.model}")
        return session

    def list_sessions(self) -> list[ChatSession]:
        """List all sessions, sorted by updated_at descending.

        Returns:
            List of ChatSession objects, newest first
        """
        sessions: list[ChatSession] = []

        for file_path in self.sessions_dir.glob("*.json"):
            session_id = file_path.stem
            if session_id.endswith(CONTEXT_SUFFIX):
                continue
            try:
                session = ChatSession.load(session_id, self.sessions_dir)
                sessions.append(session)
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning(f"Failed to load session {session_id}: {e}")
                continue

        sessions.sort(
            key=lambda s: s.metadata.updated_at,
            reverse=True,
        )

        logger.debug(f"Listed {len(sessions)} sessions")
        return sessions

    def get_session(self, session_id: str) -> ChatSession:
        """Get a specific session by ID.

        Args:
            session_id: The session ID to retrieve

        Returns:
            The ChatSession object

        Raises:
            FileNotFoundError: If session doesn't exist
        """
        session = ChatSession.load(session_id, self.sessions_dir)
        logger.debug(f"Retrieved session {session_id}")
        return session

    def delete_session(self, session_id: str) -> None:
        """Delete a session and its API context file.

        Args:
            session_id: The session ID to delete

        Raises:
            FileNotFoundError: If session doesn't exist
        """
        file_path = self.sessions_dir / f"{session_id}.json"

        if not file_path.exists():
            raise FileNotFoundError(f"Session {session_id} not found")

        file_path.unlink()
        context_path = self.sessions_dir / f"{session_id}{CONTEXT_SUFFIX}.json"
        context_path.unlink(missing_ok=True)
        logger.info(f"Deleted session {session_id}")

    def update_session(
        self,
        session: ChatSession,
        model: str | None = None,
        sandbox_enabled: bool | None = None,
        converse_mode: bool | None = None,
        rate_limiter_enabled: bool | None = None,
    ) -> ChatSession:
        """Update session settings and persist them.

        Args:
            session: The session to update
            model: Optional new base model name
            sandbox_enabled: Optional sandbox flag
            converse_mode: Optional converse (no tools) flag
            rate_limiter_enabled: Optional pacing flag

        Returns:
            The updated ChatSession
        """
        if model is not None:
            session.update_model(model)
        if sandbox_enabled is not None:
            session.metadata.sandbox_enabled = sandbox_enabled
        if converse_mode is not None:
            session.metadata.converse_mode = converse_mode
        if rate_limiter_enabled is not None:
            session.metadata.rate_limiter_enabled = rate_limiter_enabled

        session.save(self.sessions_dir)

        logger.info(f"Updated session {session.session_id}")
        return session

    def get_messages(self, session_id: str) -> list[Message]:
        """Get the display transcript of a session.

        Args:
            session_id: The session ID

        Returns:
            List of messages in the session

        Raises:
            FileNotFoundError: If session doesn't exist
        """
        session = self.get_session(session_id)
        return session.messages
