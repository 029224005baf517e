"""Jinja2 templates for the generated client application.

Vue templates bind through ``v-text``/``:attr`` instead of mustaches so the
Jinja delimiters never collide with Vue's.
"""

from __future__ import annotations

RUNTIME_VERSION = "1"

REGION_OPEN = "// <forge:generated {name}>"
REGION_CLOSE = "// </forge:generated {name}>"


LIST_VIEW = """\
<!-- {{ header }} -->
<template>
  <div class="{{ styles.page }}">
    <header class="{{ styles.toolbar }}">
      <h1 v-text="title"></h1>
{% if contract.permissions.can_create %}
      <router-link class="{{ styles.primary_button }}" to="{{ contract.routes.new }}">New</router-link>
{% endif %}
      <button type="button" class="{{ styles.button }}" @click="load">Refresh</button>
    </header>
{% if vm.filters %}
    <form class="{{ styles.filters }}" @submit.prevent="load">
{% for f in vm.filters %}
      <label class="{{ styles.filter }}">
        <span>{{ f.label|html }}</span>
{% if f.control == "select" %}
        <select v-model="filters.{{ f.fieldname }}">
          <option value=""></option>
{% for opt in f.options %}
          <option value="{{ opt|html }}">{{ opt|html }}</option>
{% endfor %}
        </select>
{% elif f.control == "check" %}
        <select v-model="filters.{{ f.fieldname }}">
          <option value=""></option>
          <option :value="1">Yes</option>
          <option :value="0">No</option>
        </select>
{% elif f.control == "date" %}
        <input type="date" v-model="filters.{{ f.fieldname }}" />
{% else %}
        <input type="text" v-model="filters.{{ f.fieldname }}" placeholder="{{ f.placeholder|html }}" />
{% endif %}
      </label>
{% endfor %}
    </form>
{% endif %}
    <table class="{{ styles.table }}">
      <thead>
        <tr>
{% for col in vm.columns %}
          <th class="{{ styles.cell }}">{{ col.label|html }}</th>
{% endfor %}
        </tr>
      </thead>
      <tbody>
        <tr v-if="!loading && rows.length === 0">
          <td colspan="{{ vm.columns|length }}" class="{{ styles.empty }}">No records</td>
        </tr>
        <tr v-for="row in rows" :key="row.name" class="{{ styles.row }}" @click="open(row)">
{% for col in vm.columns %}
          <td class="{{ styles.cell }}" v-text="display(row.{{ col.fieldname }})"></td>
{% endfor %}
        </tr>
      </tbody>
    </table>
  </div>
</template>

<script setup lang="ts">
import { onBeforeUnmount, onMounted, reactive, ref, watch } from "vue";
import { useRouter } from "vue-router";
import { CONTRACT, DOCTYPE, list{{ pascal }}, type {{ pascal }} } from "{{ paths.api_from_page }}";
import { subscribeList } from "{{ paths.realtime_from_page }}";

const title = DOCTYPE;
const router = useRouter();
const rows = ref<{{ pascal }}[]>([]);
const loading = ref(false);
const filters = reactive<Record<string, unknown>>({});
const sort = CONTRACT.list.default_sort;

function activeFilters(): Record<string, unknown> {
  return Object.fromEntries(
    Object.entries(filters).filter(([, value]) => value !== undefined && value !== null && value !== ""),
  );
}

function display(value: unknown): string {
  return value === undefined || value === null ? "" : String(value);
}

async function load(): Promise<void> {
  loading.value = true;
  try {
    rows.value = await list{{ pascal }}({
      fields: [...CONTRACT.list.columns],
      filters: activeFilters(),
      orderBy: `${sort.field} ${sort.order}`,
    });
  } finally {
    loading.value = false;
  }
}

function open(row: {{ pascal }}): void {
  router.push(`{{ contract.routes.list }}/${encodeURIComponent(row.name)}`);
}

let unsubscribe: (() => void) | null = null;

onMounted(() => {
  load();
  unsubscribe = subscribeList(DOCTYPE, CONTRACT.realtime, () => load());
});

onBeforeUnmount(() => {
  unsubscribe?.();
});

watch(filters, () => load(), { deep: true });
</script>
"""


DETAIL_VIEW = """\
<!-- {{ header }} -->
<template>
  <div class="{{ styles.page }}">
    <header class="{{ styles.toolbar }}">
      <h1 v-text="heading"></h1>
      <span v-if="doc.docstatus === 1" class="{{ styles.badge }}">Submitted</span>
      <span v-else-if="doc.docstatus === 2" class="{{ styles.badge }}">Cancelled</span>
{% if contract.actions.workflow %}
      <span v-if="doc.{{ contract.actions.workflow_state_field }}" class="{{ styles.badge }}" v-text="doc.{{ contract.actions.workflow_state_field }}"></span>
{% endif %}
      <div class="{{ styles.actions }}">
{% if contract.permissions.can_write or contract.permissions.can_create %}
        <button type="button" class="{{ styles.primary_button }}" :disabled="saving || doc.docstatus > 0" @click="save">Save</button>
{% endif %}
{% if contract.actions.submit and contract.permissions.can_submit %}
        <button v-if="!isNew && doc.docstatus === 0" type="button" class="{{ styles.button }}" @click="submit">Submit</button>
{% endif %}
{% if contract.actions.cancel and contract.permissions.can_cancel %}
        <button v-if="doc.docstatus === 1" type="button" class="{{ styles.button }}" @click="cancel">Cancel</button>
{% endif %}
{% if contract.actions.amend and contract.permissions.can_amend %}
        <button v-if="doc.docstatus === 2" type="button" class="{{ styles.button }}" @click="amend">Amend</button>
{% endif %}
{% if contract.actions.workflow %}
        <button
          v-for="t in workflowActions"
          :key="t.action"
          type="button"
          class="{{ styles.button }}"
          @click="applyAction(t.action)"
          v-text="t.action"
        ></button>
{% endif %}
        <button
          v-for="b in script.buttons()"
          :key="b.label"
          type="button"
          class="{{ styles.button }}"
          @click="b.run()"
          v-text="b.label"
        ></button>
      </div>
    </header>
    <p v-if="error" class="{{ styles.error }}" v-text="error"></p>
    <form class="{{ styles.form }}" @submit.prevent="save">
{% for section in vm.sections %}
      <section class="{{ styles.section }}" data-section="{{ section.id }}">
        <h2>{{ section.title|html }}</h2>
{% for f in section.fields %}
        <div v-if="script.isVisible('{{ f.fieldname }}')" class="{{ styles.field }}" data-fieldname="{{ f.fieldname }}">
{% if f.control == "table" %}
          <h3>{{ f.label|html }}</h3>
          <table class="{{ styles.table }}">
            <thead>
              <tr>
{% for col in f.table.columns %}
                <th class="{{ styles.cell }}">{{ col.label|html }}</th>
{% endfor %}
              </tr>
            </thead>
            <tbody>
              <tr v-for="(child, idx) in (doc.{{ f.fieldname }} || [])" :key="child.name || idx" class="{{ styles.row }}">
{% for col in f.table.columns %}
                <td class="{{ styles.cell }}" v-text="child.{{ col.fieldname }} ?? ''"></td>
{% endfor %}
              </tr>
            </tbody>
          </table>
          <button type="button" class="{{ styles.button }}" :disabled="readOnly('{{ f.fieldname }}')" @click="addRow('{{ f.fieldname }}')">Add Row</button>
{% else %}
          <label :class="{ '{{ styles.required }}': script.isMandatory('{{ f.fieldname }}') }">{{ f.label|html }}</label>
{% if f.control == "check" %}
          <input type="checkbox" v-model="doc.{{ f.fieldname }}" :true-value="1" :false-value="0" :disabled="readOnly('{{ f.fieldname }}')" @change="changed('{{ f.fieldname }}')" />
{% elif f.control == "select" %}
          <select v-model="doc.{{ f.fieldname }}" :disabled="readOnly('{{ f.fieldname }}')" @change="changed('{{ f.fieldname }}')">
{% for opt in f.options %}
            <option value="{{ opt|html }}">{{ opt|html }}</option>
{% endfor %}
          </select>
{% elif f.control == "textarea" %}
          <textarea v-model="doc.{{ f.fieldname }}" :readonly="readOnly('{{ f.fieldname }}')" @change="changed('{{ f.fieldname }}')"></textarea>
{% elif f.control == "attach" %}
          <a v-if="doc.{{ f.fieldname }}" :href="doc.{{ f.fieldname }}" target="_blank" v-text="doc.{{ f.fieldname }}"></a>
          <input type="file" :disabled="readOnly('{{ f.fieldname }}')" @change="attach('{{ f.fieldname }}', $event)" />
{% elif f.control == "number" %}
          <input type="number" v-model.number="doc.{{ f.fieldname }}" :readonly="readOnly('{{ f.fieldname }}')" @change="changed('{{ f.fieldname }}')" />
{% elif f.control == "date" %}
          <input type="date" v-model="doc.{{ f.fieldname }}" :readonly="readOnly('{{ f.fieldname }}')" @change="changed('{{ f.fieldname }}')" />
{% elif f.control == "datetime" %}
          <input type="datetime-local" v-model="doc.{{ f.fieldname }}" :readonly="readOnly('{{ f.fieldname }}')" @change="changed('{{ f.fieldname }}')" />
{% elif f.control == "link" %}
          <input type="text" v-model="doc.{{ f.fieldname }}" list="{{ f.fieldname }}-options" :readonly="readOnly('{{ f.fieldname }}')" @focus="loadLinkOptions('{{ f.fieldname }}')" @change="changed('{{ f.fieldname }}')" />
          <datalist id="{{ f.fieldname }}-options">
            <option v-for="opt in linkOptions['{{ f.fieldname }}'] || []" :key="opt" :value="opt"></option>
          </datalist>
{% else %}
          <input type="text" v-model="doc.{{ f.fieldname }}" :readonly="readOnly('{{ f.fieldname }}')" @change="changed('{{ f.fieldname }}')" />
{% endif %}
{% endif %}
        </div>
{% endfor %}
      </section>
{% endfor %}
    </form>
  </div>
</template>

<script setup lang="ts">
import { computed, onBeforeUnmount, onMounted, reactive, ref } from "vue";
import { useRoute, useRouter } from "vue-router";
import {
  CONTRACT,
  DOCTYPE,
  create{{ pascal }},
  get{{ pascal }},
  update{{ pascal }},
{% if contract.actions.submit %}
  submit{{ pascal }},
  cancel{{ pascal }},
  amend{{ pascal }},
{% endif %}
{% if contract.actions.workflow %}
  applyWorkflow{{ pascal }},
{% endif %}
  type {{ pascal }},
} from "{{ paths.api_from_page }}";
import { createFormScript } from "{{ paths.shim_from_page }}";
import { subscribeDoc } from "{{ paths.realtime_from_page }}";
import { resource } from "{{ paths.resource_from_page }}";

const route = useRoute();
const router = useRouter();
const doc = reactive<Partial<{{ pascal }}> & Record<string, unknown>>({ doctype: DOCTYPE, docstatus: 0 });
const saving = ref(false);
const error = ref("");
const linkOptions = reactive<Record<string, string[]>>({});
const script = createFormScript(CONTRACT, doc);

const routeName = computed(() => (typeof route.params.name === "string" ? route.params.name : ""));
const isNew = computed(() => !routeName.value || routeName.value === "new");
const heading = computed(() => (isNew.value ? `New ${DOCTYPE}` : String(doc.{{ vm.title_field }} || doc.name || DOCTYPE)));
{% if contract.actions.workflow %}
const workflowActions = computed(() =>
  CONTRACT.actions.transitions.filter((t) => t.state === doc.{{ contract.actions.workflow_state_field }}),
);
{% endif %}

function readOnly(fieldname: string): boolean {
  return (doc.docstatus ?? 0) > 0 || script.isReadOnly(fieldname);
}

function assign(values: Partial<{{ pascal }}>): void {
  Object.assign(doc, values);
}

async function run(task: () => Promise<void>): Promise<void> {
  error.value = "";
  saving.value = true;
  try {
    await task();
  } catch (err) {
    error.value = err instanceof Error ? err.message : String(err);
  } finally {
    saving.value = false;
  }
}

async function load(): Promise<void> {
  if (isNew.value) {
    await script.trigger("onload");
    await script.trigger("refresh");
    return;
  }
  assign(await get{{ pascal }}(routeName.value));
  await script.trigger("onload");
  await script.trigger("refresh");
}

async function changed(fieldname: string): Promise<void> {
  await script.trigger(fieldname);
}

async function save(): Promise<void> {
  const missing = script.missingMandatory();
  if (missing.length) {
    error.value = `Missing required fields: ${missing.join(", ")}`;
    return;
  }
  await run(async () => {
    await script.trigger("validate");
    if (isNew.value) {
      const created = await create{{ pascal }}(doc);
      assign(created);
      await router.replace(`{{ contract.routes.list }}/${encodeURIComponent(String(created.name))}`);
    } else {
      assign(await update{{ pascal }}(routeName.value, doc));
    }
    await script.trigger("after_save");
    await script.trigger("refresh");
  });
}
{% if contract.actions.submit %}

async function submit(): Promise<void> {
  await run(async () => {
    await script.trigger("before_submit");
    assign(await submit{{ pascal }}(routeName.value));
    await script.trigger("on_submit");
    await script.trigger("refresh");
  });
}

async function cancel(): Promise<void> {
  await run(async () => {
    await script.trigger("before_cancel");
    assign(await cancel{{ pascal }}(routeName.value));
    await script.trigger("after_cancel");
    await script.trigger("refresh");
  });
}

async function amend(): Promise<void> {
  await run(async () => {
    const amended = await amend{{ pascal }}(routeName.value);
    await router.push(`{{ contract.routes.list }}/${encodeURIComponent(String(amended.name))}`);
  });
}
{% endif %}
{% if contract.actions.workflow %}

async function applyAction(action: string): Promise<void> {
  await run(async () => {
    assign(await applyWorkflow{{ pascal }}(doc, action));
    await script.trigger("refresh");
  });
}
{% endif %}

function addRow(fieldname: string): void {
  const rows = (doc[fieldname] as Record<string, unknown>[] | undefined) ?? [];
  rows.push({ idx: rows.length + 1 });
  doc[fieldname] = rows;
  script.trigger(`${fieldname}_add`);
}

async function attach(fieldname: string, event: Event): Promise<void> {
  const input = event.target as HTMLInputElement;
  const file = input.files?.[0];
  if (!file) {
    return;
  }
  await run(async () => {
    doc[fieldname] = await resource.upload(file, DOCTYPE, isNew.value ? undefined : routeName.value, fieldname);
    await changed(fieldname);
  });
}

async function loadLinkOptions(fieldname: string): Promise<void> {
  const target = (CONTRACT.form.links as Record<string, string>)[fieldname];
  if (!target) {
    return;
  }
  const query = script.queryFor(fieldname);
  const rows = await resource.list<{ name: string }>(target, { fields: ["name"], filters: query.filters, limit: 20 });
  linkOptions[fieldname] = rows.map((row) => row.name);
}

let unsubscribe: (() => void) | null = null;

onMounted(async () => {
  await run(load);
  if (!isNew.value) {
    unsubscribe = subscribeDoc(DOCTYPE, routeName.value, CONTRACT.realtime, () => run(load));
  }
});

onBeforeUnmount(() => {
  unsubscribe?.();
});
</script>
"""


ACTION_MODULE = """\
// {{ header }}
import { resource, type ListParams } from "{{ paths.resource_from_api }}";

{{ regions.api.open }}
export const DOCTYPE = {{ doctype|js_string }};

export interface {{ pascal }} {
  name: string;
  doctype?: string;
  docstatus?: 0 | 1 | 2;
  modified?: string;
{% for f in vm.typed_fields %}
  {{ f.fieldname }}?: {{ f.fieldtype|ts_type }};
{% endfor %}
}

export function list{{ pascal }}(params: ListParams = {}): Promise<{{ pascal }}[]> {
  return resource.list<{{ pascal }}>(DOCTYPE, params);
}

export function get{{ pascal }}(name: string): Promise<{{ pascal }}> {
  return resource.get<{{ pascal }}>(DOCTYPE, name);
}

export function create{{ pascal }}(doc: Partial<{{ pascal }}>): Promise<{{ pascal }}> {
  return resource.insert<{{ pascal }}>(DOCTYPE, doc);
}

export function update{{ pascal }}(name: string, doc: Partial<{{ pascal }}>): Promise<{{ pascal }}> {
  return resource.save<{{ pascal }}>(DOCTYPE, name, doc);
}

export function delete{{ pascal }}(name: string): Promise<void> {
  return resource.remove(DOCTYPE, name);
}
{% if contract.actions.submit %}

export function submit{{ pascal }}(name: string): Promise<{{ pascal }}> {
  return resource.submit<{{ pascal }}>(DOCTYPE, name);
}

export function cancel{{ pascal }}(name: string): Promise<{{ pascal }}> {
  return resource.cancel<{{ pascal }}>(DOCTYPE, name);
}

export function amend{{ pascal }}(name: string): Promise<{{ pascal }}> {
  return resource.amend<{{ pascal }}>(DOCTYPE, name);
}
{% endif %}
{% if contract.actions.workflow %}

export function applyWorkflow{{ pascal }}(doc: Partial<{{ pascal }}>, action: string): Promise<{{ pascal }}> {
  return resource.applyWorkflow<{{ pascal }}>({ ...doc, doctype: DOCTYPE }, action);
}
{% endif %}
{{ regions.api.close }}

{{ regions.contract.open }}
export const CONTRACT = {{ contract|tojson }} as const;
{{ regions.contract.close }}

{{ regions.methods.open }}
export const METHODS = {{ contract.actions.methods|tojson }} as const;
{% for m in contract.actions.methods %}

/** {{ m.label }} */
export function call{{ m.method|pascal }}(args: Record<string, unknown> = {}): Promise<unknown> {
  return resource.call({{ m.method|js_string }}, args);
}
{% endfor %}
{{ regions.methods.close }}
"""


ROUTER_MODULE = """\
// {{ header }}
import type { RouteRecordRaw } from "vue-router";

export const {{ camel }}Routes: RouteRecordRaw[] = [
  {
    path: {{ contract.routes.list|js_string }},
    name: {{ (slug ~ "-list")|js_string }},
    component: () => import({{ paths.list_from_router|js_string }}),
  },
  {
    path: {{ contract.routes.new|js_string }},
    name: {{ (slug ~ "-new")|js_string }},
    component: () => import({{ paths.detail_from_router|js_string }}),
  },
  {
    path: {{ contract.routes.detail|js_string }},
    name: {{ (slug ~ "-detail")|js_string }},
    component: () => import({{ paths.detail_from_router|js_string }}),
    props: true,
  },
];

export default {{ camel }}Routes;
"""


RUNTIME_RESOURCE = """\
// {{ header }}
export interface ListParams {
  fields?: string[];
  filters?: Record<string, unknown>;
  orderBy?: string;
  limit?: number;
  start?: number;
}

export class ResourceError extends Error {
  constructor(
    message: string,
    readonly status: number,
    readonly detail: unknown = null,
  ) {
    super(message);
  }
}

const BASE = (import.meta as { env?: Record<string, string> }).env?.VITE_SITE_URL ?? "";

function csrfToken(): string {
  return (window as unknown as { csrf_token?: string }).csrf_token ?? "";
}

async function request<T>(method: string, path: string, body?: unknown, query?: Record<string, string>): Promise<T> {
  const url = new URL(`${BASE}${path}`, window.location.origin);
  for (const [key, value] of Object.entries(query ?? {})) {
    url.searchParams.set(key, value);
  }
  const init: RequestInit = {
    method,
    credentials: "include",
    headers: { Accept: "application/json", "X-Frappe-CSRF-Token": csrfToken() },
  };
  if (body instanceof FormData) {
    init.body = body;
  } else if (body !== undefined) {
    (init.headers as Record<string, string>)["Content-Type"] = "application/json";
    init.body = JSON.stringify(body);
  }
  const res = await fetch(url.toString(), init);
  const payload = await res.json().catch(() => ({}));
  if (!res.ok) {
    const message = payload?.exception || payload?.message || `${method} ${path} failed with ${res.status}`;
    throw new ResourceError(String(message), res.status, payload);
  }
  return (payload.data ?? payload.message) as T;
}

function docPath(doctype: string, name?: string): string {
  const base = `/api/resource/${encodeURIComponent(doctype)}`;
  return name === undefined ? base : `${base}/${encodeURIComponent(name)}`;
}

export const resource = {
  list<T>(doctype: string, params: ListParams = {}): Promise<T[]> {
    const query: Record<string, string> = {
      fields: JSON.stringify(params.fields ?? ["name"]),
      filters: JSON.stringify(params.filters ?? {}),
      limit_page_length: String(params.limit ?? 20),
      limit_start: String(params.start ?? 0),
    };
    if (params.orderBy) {
      query.order_by = params.orderBy;
    }
    return request<T[]>("GET", docPath(doctype), undefined, query);
  },
  get<T>(doctype: string, name: string): Promise<T> {
    return request<T>("GET", docPath(doctype, name));
  },
  insert<T>(doctype: string, doc: object): Promise<T> {
    return request<T>("POST", docPath(doctype), doc);
  },
  save<T>(doctype: string, name: string, doc: object): Promise<T> {
    return request<T>("PUT", docPath(doctype, name), doc);
  },
  remove(doctype: string, name: string): Promise<void> {
    return request<void>("DELETE", docPath(doctype, name));
  },
  async submit<T>(doctype: string, name: string): Promise<T> {
    const doc = await resource.get<object>(doctype, name);
    return request<T>("POST", "/api/method/frappe.client.submit", { doc });
  },
  async cancel<T>(doctype: string, name: string): Promise<T> {
    await request<unknown>("POST", "/api/method/frappe.client.cancel", { doctype, name });
    return resource.get<T>(doctype, name);
  },
  async amend<T>(doctype: string, name: string): Promise<T> {
    const source = await resource.get<Record<string, unknown>>(doctype, name);
    const { name: _name, docstatus: _status, modified: _modified, creation: _creation, ...rest } = source;
    return resource.insert<T>(doctype, { ...rest, amended_from: name, docstatus: 0 });
  },
  applyWorkflow<T>(doc: object, action: string): Promise<T> {
    return request<T>("POST", "/api/method/frappe.model.workflow.apply_workflow", { doc, action });
  },
  call<T = unknown>(method: string, args: Record<string, unknown> = {}): Promise<T> {
    return request<T>("POST", `/api/method/${method}`, args);
  },
  async upload(file: File, doctype: string, docname: string | undefined, fieldname: string): Promise<string> {
    const form = new FormData();
    form.append("file", file, file.name);
    form.append("doctype", doctype);
    form.append("fieldname", fieldname);
    if (docname) {
      form.append("docname", docname);
    }
    const uploaded = await request<{ file_url: string }>("POST", "/api/method/upload_file", form);
    return uploaded.file_url;
  },
};
"""


RUNTIME_SCRIPT_SHIM = """\
// {{ header }}
//
// Replays extracted Client Script fragments against a live document. Each
// fragment is compiled with `new Function` in strict mode; browser globals are
// shadowed by parameters bound to `undefined`, so a fragment only sees the
// context object it is handed (frm, frappe, __, doc).
import { resource } from "./resource";

interface ScriptSection {
  events: ReadonlyArray<{ event: string; body: string; source: string }>;
  queries: ReadonlyArray<{ fieldname: string; body: string; source: string }>;
  buttons: ReadonlyArray<{ label: string; body: string; source: string }>;
}

interface FormSection {
  depends_on: Readonly<Record<string, string>>;
  mandatory_depends_on: Readonly<Record<string, string>>;
  read_only_depends_on: Readonly<Record<string, string>>;
  required: ReadonlyArray<string>;
  read_only: ReadonlyArray<string>;
  labels: Readonly<Record<string, string>>;
}

export interface ScriptContract {
  doctype: string;
  form: FormSection;
  scripts: ScriptSection;
}

type Doc = Record<string, unknown>;
type Compiled = (...args: unknown[]) => unknown;

const SHADOWED = [
  "window",
  "document",
  "globalThis",
  "self",
  "top",
  "fetch",
  "XMLHttpRequest",
  "WebSocket",
  "localStorage",
  "sessionStorage",
  "indexedDB",
  "navigator",
  "location",
  "Function",
  "importScripts",
];

const cache = new Map<string, Compiled | null>();

function compile(params: string[], body: string): Compiled | null {
  const key = `${params.join(",")}\\u0000${body}`;
  if (cache.has(key)) {
    return cache.get(key) ?? null;
  }
  let fn: Compiled | null = null;
  try {
    fn = new Function(...SHADOWED, ...params, `"use strict";\\n${body}`) as Compiled;
  } catch (err) {
    console.warn("forge: fragment failed to compile", err);
  }
  cache.set(key, fn);
  return fn;
}

function invoke(fn: Compiled, args: unknown[]): unknown {
  return fn(...SHADOWED.map(() => undefined), ...args);
}

function isEmpty(value: unknown): boolean {
  return value === undefined || value === null || value === "" || (Array.isArray(value) && value.length === 0);
}

export function evaluateCondition(expression: string | undefined, doc: Doc, fallback = true): boolean {
  if (!expression) {
    return fallback;
  }
  const expr = expression.trim();
  if (expr.startsWith("eval:")) {
    const fn = compile(["doc", "parent"], `return (${expr.slice(5)});`);
    if (!fn) {
      return fallback;
    }
    try {
      return Boolean(invoke(fn, [doc, doc]));
    } catch {
      return fallback;
    }
  }
  return !isEmpty(doc[expr]);
}

function makeFrappe() {
  return {
    call: (opts: { method: string; args?: Record<string, unknown> }) =>
      resource.call(opts.method, opts.args ?? {}).then((message) => ({ message })),
    msgprint: (message: unknown) => console.info(message),
    show_alert: (message: unknown) => console.info(message),
    throw: (message: unknown) => {
      throw new Error(String(message));
    },
  };
}

const translate = (text: string) => text;

export function createFormScript(contract: ScriptContract, doc: Doc) {
  const queries = new Map<string, () => unknown>();
  const buttons = new Map<string, () => unknown>();
  const frappe = makeFrappe();

  const frm = {
    doc,
    doctype: contract.doctype,
    get is_new() {
      return !doc.name;
    },
    set_value(fieldname: string | Doc, value?: unknown) {
      if (typeof fieldname === "object") {
        Object.assign(doc, fieldname);
      } else {
        doc[fieldname] = value;
      }
      return Promise.resolve();
    },
    refresh_field(_fieldname: string) {},
    refresh() {},
    set_query(fieldname: string, ...rest: unknown[]) {
      const fn = rest[rest.length - 1];
      if (typeof fn === "function") {
        queries.set(fieldname, () => (fn as (d: Doc) => unknown)(doc));
      }
    },
    add_custom_button(label: string, fn: () => unknown) {
      buttons.set(label, fn);
    },
    remove_custom_button(label: string) {
      buttons.delete(label);
    },
    clear_custom_buttons() {
      buttons.clear();
    },
  };

  for (const q of contract.scripts.queries) {
    const fn = compile(["doc", "cdt", "cdn", "frm", "frappe", "__"], q.body);
    if (fn) {
      queries.set(q.fieldname, () => invoke(fn, [doc, contract.doctype, doc.name, frm, frappe, translate]));
    }
  }
  for (const b of contract.scripts.buttons) {
    const fn = compile(["frm", "frappe", "__"], b.body);
    if (fn) {
      buttons.set(b.label, () => invoke(fn, [frm, frappe, translate]));
    }
  }

  async function trigger(event: string): Promise<void> {
    for (const handler of contract.scripts.events) {
      if (handler.event !== event) {
        continue;
      }
      const fn = compile(["frm", "cdt", "cdn", "frappe", "__"], handler.body);
      if (!fn) {
        continue;
      }
      try {
        await invoke(fn, [frm, contract.doctype, doc.name, frappe, translate]);
      } catch (err) {
        console.warn(`forge: ${event} handler from ${handler.source} failed`, err);
        if (event === "validate" || event === "before_submit") {
          throw err;
        }
      }
    }
  }

  return {
    frm,
    trigger,
    isVisible(fieldname: string): boolean {
      return evaluateCondition(contract.form.depends_on[fieldname], doc, true);
    },
    isMandatory(fieldname: string): boolean {
      if (contract.form.required.includes(fieldname)) {
        return true;
      }
      return evaluateCondition(contract.form.mandatory_depends_on[fieldname], doc, false);
    },
    isReadOnly(fieldname: string): boolean {
      if (contract.form.read_only.includes(fieldname)) {
        return true;
      }
      return evaluateCondition(contract.form.read_only_depends_on[fieldname], doc, false);
    },
    missingMandatory(): string[] {
      return Object.keys(contract.form.labels).filter(
        (fieldname) => this.isVisible(fieldname) && this.isMandatory(fieldname) && isEmpty(doc[fieldname]),
      );
    },
    queryFor(fieldname: string): { filters?: Record<string, unknown> } {
      const fn = queries.get(fieldname);
      if (!fn) {
        return {};
      }
      try {
        return (fn() as { filters?: Record<string, unknown> }) ?? {};
      } catch (err) {
        console.warn(`forge: query for ${fieldname} failed`, err);
        return {};
      }
    },
    buttons(): Array<{ label: string; run: () => unknown }> {
      return Array.from(buttons.entries()).map(([label, run]) => ({ label, run }));
    },
  };
}
"""


RUNTIME_REALTIME = """\
// {{ header }}
import { io, type Socket } from "socket.io-client";

export interface RealtimeTopics {
  room: string;
  list: string;
  doc: string;
}

let socket: Socket | null = null;

function connect(): Socket {
  if (!socket) {
    socket = io(window.location.origin, { path: "/socket.io", withCredentials: true });
  }
  return socket;
}

export function subscribeList(doctype: string, topics: RealtimeTopics, onUpdate: (data: unknown) => void): () => void {
  const s = connect();
  const handler = (data: { doctype?: string }) => {
    if (!data || data.doctype === doctype) {
      onUpdate(data);
    }
  };
  s.emit("doctype_subscribe", doctype);
  s.on(topics.list, handler);
  return () => {
    s.off(topics.list, handler);
    s.emit("doctype_unsubscribe", doctype);
  };
}

export function subscribeDoc(
  doctype: string,
  name: string,
  topics: RealtimeTopics,
  onUpdate: (data: unknown) => void,
): () => void {
  const s = connect();
  const handler = (data: { doctype?: string; name?: string }) => {
    if (data && data.doctype === doctype && data.name === name) {
      onUpdate(data);
    }
  };
  s.emit("doc_subscribe", doctype, name);
  s.on(topics.doc, handler);
  return () => {
    s.off(topics.doc, handler);
    s.emit("doc_unsubscribe", doctype, name);
  };
}
"""
