"""
Test Package Initialization

This package contains all unit and integration tests for the
MentorAI voice tutor core.

Test Structure:
- test_config.py: Configuration tests
- test_events.py: Event bus tests
- test_logger.py: Logging setup
- test_session.py: State machine table and snapshots
- test_speech_channels.py: Capture and synthesis channel contracts
- test_response_provider.py: Remote strategy and local rules
- test_orchestrator.py: Conversation state machine
- test_agent_channel.py: Hosted agent link
- test_voice_assistant.py: Assembly, feeds and console loop
- test_api_server.py: HTTP API
- test_cli.py: Command line interface

Run tests with:
    pytest tests/ -v
"""
