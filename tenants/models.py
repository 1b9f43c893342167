from django.conf import settings
from django.db import models
from django.utils.text import slugify


class FeatureFlags(models.Model):
    """Module toggles shared by gyms and the subscription plans that grant them."""

    FEATURES = ['crm', 'scheduling', 'attendance', 'inventory', 'staff', 'payments', 'reports']

    crm = models.BooleanField(default=True)
    scheduling = models.BooleanField(default=True)
    attendance = models.BooleanField(default=True)
    inventory = models.BooleanField(default=True)
    staff = models.BooleanField(default=True)
    payments = models.BooleanField(default=True)
    reports = models.BooleanField(default=True)

    class Meta:
        abstract = True

    @property
    def features(self):
        return {name: getattr(self, name) for name in self.FEATURES}

    def has_feature(self, name):
        return bool(getattr(self, name, False))


class Gym(FeatureFlags):
    CURRENCY_CHOICES = [
        ('INR', 'INR'),
        ('USD', 'USD'),
        ('EUR', 'EUR'),
        ('GBP', 'GBP'),
    ]

    name = models.CharField(max_length=255)
    slug = models.SlugField(unique=True, blank=True)
    subdomain = models.CharField(max_length=100, unique=True, null=True, blank=True)
    owner = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='owned_gyms')

    # Branding
    logo_url = models.URLField(blank=True, default='')
    primary_color = models.CharField(max_length=7, default='#2563eb')
    secondary_color = models.CharField(max_length=7, default='#64748b')

    # Contact
    contact_email = models.EmailField(blank=True, default='')
    contact_phone = models.CharField(max_length=30, blank=True, default='')
    address = models.TextField(blank=True, default='')
    website = models.URLField(blank=True, default='')

    # Settings
    currency = models.CharField(max_length=3, choices=CURRENCY_CHOICES, default='INR')
    timezone = models.CharField(max_length=64, default='UTC')

    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']

    def save(self, *args, **kwargs):
        if not self.slug:
            base = slugify(self.name) or 'gym'
            slug = base
            counter = 1
            while Gym.objects.filter(slug=slug).exclude(pk=self.pk).exists():
                counter += 1
                slug = f"{base}-{counter}"
            self.slug = slug
        if self.subdomain:
            self.subdomain = self.subdomain.strip().lower()
        else:
            self.subdomain = None
        super().save(*args, **kwargs)

    def __str__(self):
        return self.name

    def apply_features(self, source):
        """Copies feature flags from a plan (or any FeatureFlags instance)."""
        for name in self.FEATURES:
            setattr(self, name, getattr(source, name))
        self.save(update_fields=self.FEATURES + ['updated_at'])

    def to_summary(self):
        return {'id': self.id, 'name': self.name, 'slug': self.slug}

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'slug': self.slug,
            'subdomain': self.subdomain,
            'owner': self.owner.to_dict() if self.owner_id else None,
            'features': self.features,
            'branding': {
                'logo_url': self.logo_url,
                'primary_color': self.primary_color,
                'secondary_color': self.secondary_color,
            },
            'contact': {
                'email': self.contact_email,
                'phone': self.contact_phone,
                'address': self.address,
                'website': self.website,
            },
            'settings': {'currency': self.currency, 'timezone': self.timezone},
            'is_active': self.is_active,
            'created_at': self.created_at,
        }


class GymScopedModel(models.Model):
    gym = models.ForeignKey(Gym, on_delete=models.CASCADE, related_name='%(class)ss')

    class Meta:
        abstract = True
