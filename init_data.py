from helpora import create_app
from helpora.extensions import db
from helpora.models import (
    AccountStatus,
    RequestStatus,
    ServiceRequest,
    User,
    UserRole,
    UrgencyLevel,
)
from helpora.services import lifecycle
from datetime import datetime

app = create_app()

with app.app_context():
    # Create admin account (if not exists)
    admin_email = "admin@example.com"
    admin = User.query.filter_by(email=admin_email).first()
    if not admin:
        admin = User(name="Admin", email=admin_email, role=UserRole.ADMIN)
        admin.set_password("admin123")
        db.session.add(admin)
        print(f"Created admin account: {admin_email} / admin123")

    customer_email = "customer@example.com"
    customer = User.query.filter_by(email=customer_email).first()
    if not customer:
        customer = User(
            name="Asha Customer",
            email=customer_email,
            phone="+91 90000 00001",
            location="Pune",
            role=UserRole.CUSTOMER,
        )
        customer.set_password("customer123")
        db.session.add(customer)
        print(f"Created customer: {customer_email} / customer123")

    volunteers_data = [
        {
            "email": "helper1@example.com",
            "name": "Ravi Plumber",
            "location": "Pune",
            "skills": "plumbing,repairs",
            "bio": "Ten years of household plumbing work",
        },
        {
            "email": "helper2@example.com",
            "name": "Meera Electric",
            "location": "Mumbai",
            "skills": "electrical,appliances",
            "bio": "Certified electrician",
        },
        {
            "email": "helper3@example.com",
            "name": "Kiran Tutor",
            "location": "Bengaluru",
            "skills": "tutoring,maths",
            "bio": "School maths and science tutoring",
        },
    ]

    volunteers = []
    for volunteer_data in volunteers_data:
        volunteer = User.query.filter_by(
            email=volunteer_data["email"]
        ).first()
        if not volunteer:
            volunteer = User(
                name=volunteer_data["name"],
                email=volunteer_data["email"],
                location=volunteer_data["location"],
                skills=volunteer_data["skills"],
                bio=volunteer_data["bio"],
                role=UserRole.VOLUNTEER,
                status=AccountStatus.ACTIVE,
            )
            volunteer.set_password("helper123")
            db.session.add(volunteer)
            print(
                "Created volunteer: %s / helper123 - %s"
                % (volunteer_data["email"], volunteer_data["skills"])
            )
        volunteers.append(volunteer)

    db.session.flush()

    if not ServiceRequest.query.filter_by(user_id=customer.id).first():
        now = datetime.utcnow()
        sample = ServiceRequest(
            user_id=customer.id,
            volunteer_id=volunteers[0].id,
            user_name=customer.name,
            contact=customer.email,
            message="Kitchen sink is leaking under the cabinet",
            service_category="plumbing",
            service_location="Pune",
            urgency_level=UrgencyLevel.HIGH,
            created_at=now,
            cancel_deadline=lifecycle.default_cancel_deadline(now),
        )
        lifecycle.record_status(
            sample,
            RequestStatus.REQUESTED,
            customer.name,
            "Request submitted",
        )
        db.session.add(sample)
        print("  Created sample request for the customer")

    db.session.commit()
    print("Data initialization completed!")
