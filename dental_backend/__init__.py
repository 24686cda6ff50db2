"""
Dental clinic scheduling backend.

Structure:
- config.py        : settings from environment / .env
- db.py            : SQLAlchemy engine, session factory, transactional sessions
- models.py        : patients, dentists, appointments, status log
- auth_*.py        : users, password hashing, JWT
- errors.py        : domain errors and their HTTP status codes
- services.py      : patient and dentist registry (soft delete)
- scheduling.py    : conflict check and appointment lifecycle
- dashboard.py     : read-only statistics
- whatsapp.py      : WhatsApp Business API client and message templates
- notifications.py : appointment notices sent through WhatsApp
- schemas.py       : request / response bodies
- api_main.py      : FastAPI app
- seed.py          : sample dentists
- cli.py           : command line tools
"""
