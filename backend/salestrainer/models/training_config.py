# backend/salestrainer/models/training_config.py
"""
Training configuration tables.

The realtime core only reads these; they are maintained by the admin
surface. Product and script rows are treated as opaque text when the
upstream instructions are assembled.
"""

from sqlalchemy import Column, Integer, String, Float, Text, JSON, Boolean

from salestrainer.database import Base


class AppConfig(Base):
    __tablename__ = "app_config"

    id = Column(Integer, primary_key=True, index=True)
    app_name = Column(String(200), nullable=True)
    greeting = Column(Text, nullable=True)
    trigger_phrase = Column(String(200), nullable=True)

    sales_mode = Column(String(20), nullable=False, server_default="ai_sells")
    difficulty = Column(String(20), nullable=False, server_default="medium")
    selected_voice = Column(String(50), nullable=True)
    ai_persona = Column(Text, nullable=True)

    # Lexical signal lists; NULL means "use the built-in defaults"
    exit_phrases = Column(JSON, nullable=True)
    buy_phrases = Column(JSON, nullable=True)
    give_up_phrases = Column(JSON, nullable=True)

    max_closing_attempts = Column(Integer, nullable=False, server_default="3")


class PenProduct(Base):
    __tablename__ = "pen_products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    tagline = Column(String(300), nullable=True)
    base_price = Column(Float, nullable=True)
    premium_price = Column(Float, nullable=True)
    features = Column(JSON, nullable=True)
    benefits = Column(JSON, nullable=True)
    variants = Column(JSON, nullable=True)
    scarcity_message = Column(String(300), nullable=True)


class AIPromptConfig(Base):
    __tablename__ = "ai_prompt_configs"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=True)
    system_prompt = Column(Text, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)


class DiscoveryQuestion(Base):
    __tablename__ = "discovery_questions"

    id = Column(Integer, primary_key=True, index=True)
    question = Column(Text, nullable=False)
    purpose = Column(Text, nullable=True)
    follow_up = Column(Text, nullable=True)
    target_need = Column(String(100), nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)
    enabled = Column(Boolean, nullable=False, default=True)


class PositioningAngle(Base):
    __tablename__ = "positioning_angles"

    id = Column(Integer, primary_key=True, index=True)
    user_need = Column(String(100), nullable=False)
    headline = Column(String(300), nullable=False)
    pitch = Column(Text, nullable=True)
    emotional_hook = Column(Text, nullable=True)
    enabled = Column(Boolean, nullable=False, default=True)


class ClosingStrategy(Base):
    __tablename__ = "closing_strategies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    script = Column(Text, nullable=False)
    use_when = Column(Text, nullable=True)
    enabled = Column(Boolean, nullable=False, default=True)


class ObjectionHandler(Base):
    __tablename__ = "objection_handlers"

    id = Column(Integer, primary_key=True, index=True)
    objection = Column(Text, nullable=False)
    response = Column(Text, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
