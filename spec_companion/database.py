"""Database setup and configuration for the spec companion application."""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
  Column,
  DateTime,
  Float,
  ForeignKey,
  Integer,
  String,
  Text,
  create_engine,
  event,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

from spec_companion.config import ServerConfig

logger = logging.getLogger(__name__)

# Database configuration
DATABASE_URL = ServerConfig.DATABASE_URL


def _engine_kwargs(url: str) -> dict:
  """Connection arguments for the configured backend."""
  kwargs = {
    'pool_pre_ping': True,  # Verify connections before use
    'echo': False,  # Set to True for SQL debugging
  }
  if url.startswith('sqlite'):
    kwargs['connect_args'] = {
      'check_same_thread': False,  # Execution jobs persist from their own thread
      'timeout': 30,  # 30 second busy timeout for database operations
    }
  if ':memory:' not in url:
    kwargs.update(
      pool_size=ServerConfig.DB_POOL_SIZE,
      max_overflow=ServerConfig.DB_MAX_OVERFLOW,
      pool_timeout=ServerConfig.DB_POOL_TIMEOUT,
      pool_recycle=ServerConfig.DB_POOL_RECYCLE,
    )
  return kwargs


def enable_sqlite_foreign_keys(engine):
  """Turn on FK enforcement so ON DELETE CASCADE applies."""
  if engine.dialect.name != 'sqlite':
    return

  @event.listens_for(engine, 'connect')
  def _set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute('PRAGMA foreign_keys=ON')
    cursor.close()


engine = create_engine(DATABASE_URL, **_engine_kwargs(DATABASE_URL))
enable_sqlite_foreign_keys(engine)

SessionLocal = sessionmaker(
  autocommit=False,
  autoflush=False,
  bind=engine,
  expire_on_commit=False,  # Prevent lazy loading issues
)

# Flag to prevent repeated table creation
_tables_created = False

Base = declarative_base()


def _uuid() -> str:
  return str(uuid.uuid4())


def utcnow() -> datetime:
  """Timezone-aware now; SQLite keeps microseconds so result ordering is stable."""
  return datetime.now(timezone.utc)


class ProjectDB(Base):
  """Database model for projects."""

  __tablename__ = 'projects'

  id = Column(String, primary_key=True, default=_uuid)
  name = Column(String, nullable=False)
  codebase_path = Column(String, nullable=False)
  created_at = Column(DateTime, default=utcnow)
  updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

  # Relationships
  specs = relationship('SpecDB', back_populates='project', cascade='all, delete-orphan', passive_deletes=True)
  reports = relationship(
    'AlignmentReportDB', back_populates='project', cascade='all, delete-orphan', passive_deletes=True
  )


class SpecDB(Base):
  """Database model for uploaded specification documents."""

  __tablename__ = 'specs'

  id = Column(String, primary_key=True, default=_uuid)
  project_id = Column(String, ForeignKey('projects.id', ondelete='CASCADE'), nullable=False, index=True)
  filename = Column(String, nullable=False)
  content = Column(Text, nullable=False)
  parsed_at = Column(DateTime, nullable=True)
  created_at = Column(DateTime, default=utcnow)

  # Relationships
  project = relationship('ProjectDB', back_populates='specs')
  requirements = relationship(
    'RequirementDB',
    back_populates='spec',
    cascade='all, delete-orphan',
    passive_deletes=True,
    order_by='RequirementDB.position',
  )


class RequirementDB(Base):
  """Database model for requirements extracted from a spec."""

  __tablename__ = 'requirements'

  id = Column(String, primary_key=True, default=_uuid)
  spec_id = Column(String, ForeignKey('specs.id', ondelete='CASCADE'), nullable=False, index=True)
  position = Column(Integer, nullable=False, default=0)  # Extraction order within the spec
  section = Column(String, nullable=False)
  description = Column(Text, nullable=False)
  req_type = Column(String, nullable=False, default='functional')
  priority = Column(String, nullable=False, default='medium')

  # Relationships
  spec = relationship('SpecDB', back_populates='requirements')
  generated_tests = relationship(
    'GeneratedTestDB', back_populates='requirement', cascade='all, delete-orphan', passive_deletes=True
  )


class GeneratedTestDB(Base):
  """Database model for generated test code."""

  __tablename__ = 'generated_tests'

  id = Column(String, primary_key=True, default=_uuid)
  requirement_id = Column(String, ForeignKey('requirements.id', ondelete='CASCADE'), nullable=False, index=True)
  framework = Column(String, nullable=False)
  code = Column(Text, nullable=False)
  generation_mode = Column(String, nullable=False)
  file_path = Column(String, nullable=True)  # Set once the test is saved into the codebase
  created_at = Column(DateTime, default=utcnow)

  # Relationships
  requirement = relationship('RequirementDB', back_populates='generated_tests')
  results = relationship('TestResultDB', back_populates='generated_test', cascade='all, delete-orphan', passive_deletes=True)


class TestResultDB(Base):
  """Database model for a single test execution outcome."""

  __tablename__ = 'test_results'
  __test__ = False

  id = Column(String, primary_key=True, default=_uuid)
  generated_test_id = Column(
    String, ForeignKey('generated_tests.id', ondelete='CASCADE'), nullable=False, index=True
  )
  status = Column(String, nullable=False)
  execution_time_ms = Column(Integer, default=0)
  stdout = Column(Text, default='')
  stderr = Column(Text, default='')
  executed_at = Column(DateTime, default=utcnow)

  # Relationships
  generated_test = relationship('GeneratedTestDB', back_populates='results')


class AlignmentReportDB(Base):
  """Database model for coverage report snapshots."""

  __tablename__ = 'alignment_reports'

  id = Column(String, primary_key=True, default=_uuid)
  project_id = Column(String, ForeignKey('projects.id', ondelete='CASCADE'), nullable=False, index=True)
  coverage_percent = Column(Float, nullable=False, default=0.0)
  total_requirements = Column(Integer, nullable=False, default=0)
  covered_requirements = Column(Integer, nullable=False, default=0)
  generated_at = Column(DateTime, default=utcnow)

  # Relationships
  project = relationship('ProjectDB', back_populates='reports')
  mismatches = relationship('MismatchDB', back_populates='report', cascade='all, delete-orphan', passive_deletes=True)


class MismatchDB(Base):
  """Database model for an uncovered requirement in a report.

  requirement_id and spec_section are copied values so the snapshot survives a reparse.
  """

  __tablename__ = 'mismatches'

  id = Column(String, primary_key=True, default=_uuid)
  report_id = Column(String, ForeignKey('alignment_reports.id', ondelete='CASCADE'), nullable=False, index=True)
  requirement_id = Column(String, nullable=False)
  spec_section = Column(String, nullable=False)
  code_element = Column(String, nullable=True)
  mismatch_type = Column(String, nullable=False)
  details = Column(Text, default='')

  # Relationships
  report = relationship('AlignmentReportDB', back_populates='mismatches')


def get_db():
  """Get database session with proper error handling and connection management."""
  global _tables_created

  # Ensure database tables exist before creating session (only once)
  if not _tables_created:
    try:
      create_tables()
      _tables_created = True
    except Exception as e:
      logger.warning('Could not create tables: %s', e)

  db = None
  try:
    db = SessionLocal()
    yield db
  except Exception:
    if db:
      db.rollback()
    raise
  finally:
    if db:
      try:
        db.close()
      except Exception as e:
        # Log the error but don't raise it to avoid masking the original error
        logger.warning('Error closing database session: %s', e)


def create_tables(bind=None):
  """Create all database tables."""
  try:
    print('🔧 Creating database tables...')
    Base.metadata.create_all(bind=bind or engine)
    print('✅ Database tables created successfully')
  except Exception as e:
    print(f'❌ Error creating database tables: {e}')
    raise


if __name__ == '__main__':
  # Create tables when run directly
  create_tables()
