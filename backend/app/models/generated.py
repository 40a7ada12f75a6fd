from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, Text, text

from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()
metadata = Base.metadata


class ParkingSpots(Base):
    __tablename__ = 'parking_spots'

    name = Column(Text, nullable=False)
    id = Column(Integer, primary_key=True)
    owner_id = Column(Integer)
    address = Column(Text)
    total_slots = Column(Integer, nullable=False, server_default=text('1'))
    price = Column(Float, nullable=False, server_default=text('0'))
    daily_price = Column(Float)
    monthly_price = Column(Float)
    open_time = Column(Text)  # "HH:MM", local time
    close_time = Column(Text)  # "HH:MM" or "24:00"
    is_24_hours = Column(Integer, nullable=False, server_default=text('0'))
    is_active = Column(Integer, nullable=False, server_default=text('1'))
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))

    bookings = relationship('Bookings', back_populates='spot')
    availability = relationship('ParkingAvailability', back_populates='spot')


class Bookings(Base):
    __tablename__ = 'bookings'
    __table_args__ = (
        Index('ix_bookings_spot_time', 'spot_id', 'start_time', 'end_time'),
    )

    spot_id = Column(ForeignKey('parking_spots.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Integer, nullable=False)
    # Naive UTC
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    booking_type = Column(Text, nullable=False, server_default=text("'hourly'"))
    status = Column(Text, nullable=False, server_default=text("'pending'"))
    total_cost = Column(Float)
    created_at = Column(Text, nullable=False, server_default=text('CURRENT_TIMESTAMP'))
    id = Column(Integer, primary_key=True)

    spot = relationship('ParkingSpots', back_populates='bookings')


class ParkingAvailability(Base):
    __tablename__ = 'parking_availability'

    spot_id = Column(ForeignKey('parking_spots.id', ondelete='CASCADE'), nullable=False)
    # Naive UTC
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(Text, nullable=False, server_default=text("'blocked'"))
    slots_affected = Column(Integer, nullable=False, server_default=text('1'))
    reason = Column(Text)
    id = Column(Integer, primary_key=True)

    spot = relationship('ParkingSpots', back_populates='availability')
