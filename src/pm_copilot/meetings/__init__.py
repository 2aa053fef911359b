"""Meeting records -- Pydantic schemas and the persisted MeetingStore."""
