import os
import sys
import django
import random
from decimal import Decimal
from faker import Faker

# Add project root to Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set up Django environment
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'campus_marketplace.settings')
django.setup()

from core import services
from core.exceptions import MarketplaceError
from core.models import User, Item

fake = Faker()


def create_users(num_users=20):
    print(f"Creating {num_users} users...")

    users = []

    for _ in range(num_users):
        email = fake.unique.email()
        user = User.objects.create_user(
            username=email,
            email=email,
            password='password123',
            first_name=fake.first_name(),
            last_name=fake.last_name(),
            contact_number=fake.numerify('+1 ###-###-####'),
        )
        users.append(user)

    print(f"Created {len(users)} users.")
    return users


def create_items(users):
    print("Creating items...")
    items = []

    categories = ['furniture', 'appliances', 'electronics', 'books', 'clothing', 'other']

    item_names = [
        "Sofa", "Study Desk", "Office Chair", "Bookshelf", "Microwave",
        "Mini Fridge", "Desk Lamp", "Calculus Textbook", "Winter Jacket", "Kettle"
    ]

    for user in users:
        # Each user sells 0-3 items
        for _ in range(random.randint(0, 3)):
            name = random.choice(item_names)
            item = Item.objects.create(
                seller=user,
                name=f"{random.choice(['Vintage', 'Modern', 'Used', 'Brand New'])} {name}",
                description=fake.text(),
                category=random.choice(categories),
                price=Decimal(random.uniform(5.0, 300.0)).quantize(Decimal('0.01')),
                quantity=random.randint(1, 4),
            )
            items.append(item)

    print(f"Created {len(items)} items.")
    return items


def fill_carts(users, items):
    print("Filling carts...")
    lines = []

    for user in users:
        identity = services.Identity.from_user(user)
        candidates = [i for i in items if i.seller_id != user.id]

        for item in random.sample(candidates, min(len(candidates), random.randint(0, 3))):
            try:
                line = services.add_to_cart(identity, item.id, 1)
            except MarketplaceError as e:
                print(f"  Skipped item {item.id}: {e.detail}")
                continue

            # 30% chance of haggling
            if random.random() < 0.3:
                discount = Decimal(random.uniform(0.7, 0.95)).quantize(Decimal('0.01'))
                price = max((item.price * discount).quantize(Decimal('0.01')), Decimal('0.01'))
                line = services.propose_bargain(identity, line.id, price, fake.sentence())

            lines.append(line)

    print(f"Created {len(lines)} cart lines.")
    return lines


def create_orders(lines):
    print("Placing orders...")
    placed = []

    # Roughly half of the carts are checked out
    for line in lines:
        if random.random() < 0.5:
            continue

        identity = services.Identity.from_user(line.buyer)
        try:
            placed.extend(services.place_order(identity, [line.id]))
        except MarketplaceError as e:
            print(f"  Skipped cart line {line.id}: {e.detail}")

    for p in placed:
        outcome = random.choice(['pending', 'delivered', 'cancelled'])
        order = p.order

        if outcome == 'delivered':
            services.confirm_delivery(services.Identity.from_user(order.seller), order.id, p.otp)
        elif outcome == 'cancelled':
            services.cancel_order(services.Identity.from_user(order.buyer), order.id)

    print(f"Placed {len(placed)} orders.")
    return placed


def main():
    print("Starting database population...")

    users = create_users(num_users=20)
    items = create_items(users)
    lines = fill_carts(users, items)
    create_orders(lines)

    print("Database population completed successfully!")


if __name__ == '__main__':
    main()
