import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or (
        'dev-secret-key-change-in-production'
    )
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or (
        'sqlite:///helpora.db'
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Pagination configuration
    ITEMS_PER_PAGE = int(os.environ.get('ITEMS_PER_PAGE', 20))

    # Request cancellation window (hours after creation)
    CANCEL_WINDOW_HOURS = int(os.environ.get('CANCEL_WINDOW_HOURS', 2))

    # Platform fee taken from every released escrow payment
    PLATFORM_FEE_RATE = os.environ.get('PLATFORM_FEE_RATE', '0.10')
    DEFAULT_CURRENCY = os.environ.get('DEFAULT_CURRENCY', 'INR')

    # Stripe config.
    # Escrow holds use manual-capture PaymentIntents when a key is set.
    STRIPE_SECRET_KEY = os.environ.get('STRIPE_SECRET_KEY', '')
    STRIPE_PUBLISHABLE_KEY = os.environ.get('STRIPE_PUBLISHABLE_KEY', '')
    STRIPE_WEBHOOK_SECRET = os.environ.get('STRIPE_WEBHOOK_SECRET', '')

    # Razorpay config.
    RAZORPAY_KEY_ID = os.environ.get('RAZORPAY_KEY_ID', '')
    RAZORPAY_KEY_SECRET = os.environ.get('RAZORPAY_KEY_SECRET', '')
    RAZORPAY_WEBHOOK_SECRET = os.environ.get('RAZORPAY_WEBHOOK_SECRET', '')

    # UPI collect details shown to the payer
    DEFAULT_UPI_ID = os.environ.get('DEFAULT_UPI_ID', 'services@ybl')
    UPI_MERCHANT_NAME = os.environ.get('UPI_MERCHANT_NAME', 'Helpora')

    # Outgoing mail (SMTP).
    # With MAIL_DEV_MODE or missing credentials, mails are only logged.
    MAIL_SERVER = os.environ.get('MAIL_SERVER', 'smtp.gmail.com')
    MAIL_PORT = int(os.environ.get('MAIL_PORT', 587))
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME', '')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD', '')
    MAIL_SENDER_NAME = os.environ.get('MAIL_SENDER_NAME', 'Helpora')
    MAIL_DEV_MODE = (
        os.environ.get('MAIL_DEV_MODE', 'false').lower() == 'true'
    )

    # Admin notifications (disputes, confirmed completions)
    NOTIFICATION_EMAIL = os.environ.get('NOTIFICATION_EMAIL', '')
    ADMIN_EMAIL = os.environ.get('ADMIN_EMAIL') or NOTIFICATION_EMAIL

    # Lifecycle, money and webhook audit lines
    MAJOR_EVENTS_LOG = os.environ.get('MAJOR_EVENTS_LOG', 'major_events.log')
